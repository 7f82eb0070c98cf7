from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .errors import InputValidationError
from .logging_config import log_file_name

logger = logging.getLogger("cloud_provision.config")

DEFAULT_DEPARTMENTS = ("marketing", "sales", "hr", "operations", "media")
RUN_ID_FORMAT = "%Y%m%d%H%M%S"
ENV_PREFIX = "CLOUD_PROVISION_"
NAME_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?$")


@dataclass(frozen=True)
class ProvisionSettings:
    company: str = "acme"
    departments: Tuple[str, ...] = DEFAULT_DEPARTMENTS
    region: str = "us-east-1"
    instance_type: str = "t2.micro"
    key_name: Optional[str] = None
    endpoint_url: Optional[str] = None
    log_dir: Path = Path(".")
    image_owner: str = "amazon"
    image_name_filter: str = "al2023-ami-2023.*-x86_64"
    connect_timeout: Optional[float] = None
    read_timeout: Optional[float] = None


@dataclass(frozen=True)
class RunContext:
    """Everything one run needs, fixed once arguments are parsed."""

    company: str
    region: str
    instance_type: str
    key_name: Optional[str]
    log_file: Path
    departments: Tuple[str, ...]
    started_at: datetime
    run_id: str
    image_owner: str = "amazon"
    image_name_filter: str = "al2023-ami-2023.*-x86_64"
    tags: Tuple[Tuple[str, str], ...] = ()


_SETTING_NAMES = {f.name for f in fields(ProvisionSettings)}


def _split_departments(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",")]
    elif isinstance(value, (list, tuple)):
        items = [str(part).strip() for part in value]
    else:
        raise InputValidationError(f"departments must be a list or comma-separated string, got {value!r}")
    return tuple(item for item in items if item)


def _optional_float(name: str, value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise InputValidationError(f"{name} must be a number of seconds, got {value!r}") from exc
    if number <= 0:
        raise InputValidationError(f"{name} must be positive, got {value!r}")
    return number


def _coerce(raw: Mapping[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for key, value in raw.items():
        if key not in _SETTING_NAMES:
            logger.warning("Ignoring unknown configuration key '%s'", key)
            continue
        if value is None:
            continue
        if key == "departments":
            values[key] = _split_departments(value)
        elif key == "log_dir":
            values[key] = Path(value)
        elif key in ("connect_timeout", "read_timeout"):
            values[key] = _optional_float(key, value)
        else:
            values[key] = str(value).strip()
    return values


def load_config_file(path: Path) -> Dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text())
    except OSError as exc:
        raise InputValidationError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise InputValidationError(f"Config file {path} is not valid YAML: {exc}") from exc
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise InputValidationError(f"Config file {path} must contain a mapping at the top level")
    return _coerce(raw)


def settings_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    environ = os.environ if environ is None else environ
    raw: Dict[str, Any] = {}
    for name in _SETTING_NAMES:
        value = environ.get(ENV_PREFIX + name.upper())
        if value:
            raw[name] = value
    if "endpoint_url" not in raw and environ.get("ENDPOINT_URL"):
        raw["endpoint_url"] = environ["ENDPOINT_URL"]
    return _coerce(raw)


def _check_name(label: str, value: str) -> None:
    if not NAME_RE.match(value):
        raise InputValidationError(
            f"{label} '{value}' must use lowercase letters, digits and hyphens only"
        )


def load_settings(
    config_path: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ProvisionSettings:
    """Merge defaults, the YAML config file, the environment and CLI overrides, in that order."""
    settings = ProvisionSettings()
    if config_path is not None:
        settings = replace(settings, **load_config_file(config_path))
    settings = replace(settings, **settings_from_env(environ))
    if overrides:
        settings = replace(settings, **_coerce({k: v for k, v in overrides.items() if v is not None}))

    company = settings.company.lower()
    departments = tuple(dept.lower() for dept in settings.departments)
    _check_name("Company", company)
    if not departments:
        raise InputValidationError("At least one department is required")
    for dept in departments:
        _check_name("Department", dept)
    if len(set(departments)) != len(departments):
        raise InputValidationError(f"Department names must be unique: {', '.join(departments)}")
    return replace(settings, company=company, departments=departments)


def parse_run_id(run_id: str) -> datetime:
    try:
        return datetime.strptime(run_id, RUN_ID_FORMAT)
    except ValueError as exc:
        raise InputValidationError(f"Run id '{run_id}' must look like YYYYmmddHHMMSS") from exc


def build_run_context(
    settings: ProvisionSettings,
    started_at: Optional[datetime] = None,
    run_id: Optional[str] = None,
) -> RunContext:
    started_at = started_at or datetime.now()
    if run_id is not None:
        parse_run_id(run_id)
    return RunContext(
        company=settings.company,
        region=settings.region,
        instance_type=settings.instance_type,
        key_name=settings.key_name or None,
        log_file=settings.log_dir / log_file_name(started_at),
        departments=settings.departments,
        started_at=started_at,
        run_id=run_id or started_at.strftime(RUN_ID_FORMAT),
        image_owner=settings.image_owner,
        image_name_filter=settings.image_name_filter,
        tags=(("managed_by", "cloud-provision"),),
    )
