"""Acceptance rules for region codes and instance sizes."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger("cloud_provision.validation")

REGION_PREFIXES = frozenset({"us", "eu", "ap", "sa", "ca", "me", "af", "il", "mx", "cn"})
REGION_DIRECTIONS = frozenset(
    {
        "east",
        "west",
        "north",
        "south",
        "central",
        "northeast",
        "northwest",
        "southeast",
        "southwest",
    }
)
ALLOWED_INSTANCE_TYPES = (
    "t2.micro",
    "t2.small",
    "t2.medium",
    "t3.micro",
    "t3.small",
    "t3.medium",
)


class InputKind(str, Enum):
    REGION = "region"
    INSTANCE_SIZE = "instance-size"


@dataclass(frozen=True)
class ValidationResult:
    kind: InputKind
    value: str
    reason: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.reason is None


@dataclass(frozen=True)
class Region:
    prefix: str
    direction: str
    number: int

    def __str__(self) -> str:
        return f"{self.prefix}-{self.direction}-{self.number}"


def parse_region(raw: str) -> Region:
    """Parse ``<prefix>-<direction>-<number>`` or raise ValueError with the rejection reason."""
    parts = raw.split("-")
    if len(parts) != 3:
        raise ValueError("expected three dash-separated parts like 'us-east-1'")
    prefix, direction, number = parts
    if prefix not in REGION_PREFIXES:
        raise ValueError(f"unknown geography prefix '{prefix}'")
    if direction not in REGION_DIRECTIONS:
        raise ValueError(f"unknown direction '{direction}'")
    if not number.isdigit() or int(number) < 1:
        raise ValueError(f"region number must be a positive integer, got '{number}'")
    if number.startswith("0"):
        raise ValueError(f"region number must not have a leading zero, got '{number}'")
    return Region(prefix=prefix, direction=direction, number=int(number))


def _instance_size_reason(raw: str) -> Optional[str]:
    if raw in ALLOWED_INSTANCE_TYPES:
        return None
    return f"not one of the allowed instance types ({', '.join(ALLOWED_INSTANCE_TYPES)})"


def validate(raw: str, kind: InputKind) -> ValidationResult:
    """Apply the acceptance rule for ``kind`` to ``raw``. Rejections are logged at ERROR."""
    kind = InputKind(kind)
    if kind is InputKind.REGION:
        try:
            parse_region(raw)
            reason = None
        except ValueError as exc:
            reason = str(exc)
    else:
        reason = _instance_size_reason(raw)

    result = ValidationResult(kind=kind, value=raw, reason=reason)
    if not result.accepted:
        logger.error("Invalid %s '%s': %s", kind.value, raw, reason)
    return result


def validate_region(raw: str) -> ValidationResult:
    return validate(raw, InputKind.REGION)


def validate_instance_type(raw: str) -> ValidationResult:
    return validate(raw, InputKind.INSTANCE_SIZE)
