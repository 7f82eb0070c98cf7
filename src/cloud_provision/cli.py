from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from dotenv import load_dotenv
from rich.console import Console

from . import __version__
from .cancellation import CancellationToken, interrupt_guard
from .config import ProvisionSettings, RunContext, build_run_context, load_settings
from .errors import (
    InputValidationError,
    OperationAborted,
    PrerequisiteError,
    ProvisioningCancelled,
)
from .logging_config import SUCCESS, configure_logging
from .prerequisites import check_prerequisites
from .provider import Boto3Provider, CloudProvider
from .provisioner import cleanup, provision_buckets, provision_instances
from .reporting import OperationSummary, RunReport, print_summary, write_report
from .validation import validate_instance_type, validate_region

console = Console()
logger = logging.getLogger("cloud_provision.cli")

ProviderFactory = Callable[[ProvisionSettings], CloudProvider]


class UsageError(Exception):
    pass


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="cloud-provision",
        description="Provision one S3 bucket and one EC2 instance per department.",
        add_help=False,
    )
    parser.add_argument("--help", "-h", action="store_true", help="Show this message and exit.")
    parser.add_argument("--region", help="AWS region, e.g. us-east-1.")
    parser.add_argument("--instance-type", help="EC2 instance type, e.g. t2.micro.")
    parser.add_argument("--key-name", help="Existing EC2 key pair to attach to instances.")
    parser.add_argument("--company", help="Company identifier used in resource names.")
    parser.add_argument("--departments", help="Comma-separated department names.")
    parser.add_argument("--config", type=Path, help="YAML file with provisioning settings.")
    parser.add_argument("--endpoint-url", help="Alternative AWS endpoint (e.g. LocalStack).")
    parser.add_argument("--log-dir", type=Path, help="Directory for the run log file.")
    parser.add_argument(
        "--run-id",
        help="Timestamp (YYYYmmddHHMMSS) used in bucket names; reuse it to rerun idempotently.",
    )
    parser.add_argument("--report", type=Path, help="Write a JSON run report to this path.")
    parser.add_argument("--skip-buckets", action="store_true", help="Do not provision buckets.")
    parser.add_argument("--skip-instances", action="store_true", help="Do not provision instances.")
    return parser


def _default_provider(settings: ProvisionSettings) -> CloudProvider:
    return Boto3Provider(
        region=settings.region,
        endpoint_url=settings.endpoint_url,
        connect_timeout=settings.connect_timeout,
        read_timeout=settings.read_timeout,
    )


def _load_env_file() -> None:
    env_path = Path(os.getenv("CLOUD_PROVISION_ENV_FILE", ".env"))
    if env_path.exists():
        load_dotenv(env_path, override=False)


def _validate_inputs(ctx: RunContext, check_instance_type: bool) -> bool:
    if not validate_region(ctx.region).accepted:
        return False
    if check_instance_type and not validate_instance_type(ctx.instance_type).accepted:
        return False
    return True


def _provision(
    ctx: RunContext,
    provider: CloudProvider,
    token: CancellationToken,
    args: argparse.Namespace,
    operations: List[OperationSummary],
) -> int:
    token.raise_if_cancelled()
    check_prerequisites(provider)
    if not args.skip_buckets:
        operations.append(provision_buckets(ctx, provider, token))
        token.raise_if_cancelled()
    if not args.skip_instances:
        operations.append(provision_instances(ctx, provider, token))
        token.raise_if_cancelled()
    failures = sum(operation.failed for operation in operations)
    if failures:
        logger.error("Provisioning finished with %d failure(s)", failures)
        return 1
    logger.log(SUCCESS, "Provisioning finished: all resources created or already present")
    return 0


def run(
    ctx: RunContext,
    provider: CloudProvider,
    args: argparse.Namespace,
    token: Optional[CancellationToken] = None,
) -> RunReport:
    """Validate, check prerequisites and provision. The report carries the exit code."""
    token = token or CancellationToken()
    report = RunReport(
        run_id=ctx.run_id,
        company=ctx.company,
        region=ctx.region,
        instance_type=ctx.instance_type,
        log_file=str(ctx.log_file),
        started_at=ctx.started_at.isoformat(),
    )
    operations: List[OperationSummary] = []

    if not _validate_inputs(ctx, check_instance_type=not args.skip_instances):
        report.exit_code = 1
        report.error = "invalid input"
    else:
        with interrupt_guard(token):
            try:
                report.exit_code = _provision(ctx, provider, token, args, operations)
            except ProvisioningCancelled as exc:
                if exc.partial is not None:
                    operations.append(exc.partial)
                logger.warning("%s", exc)
                cleanup(operations)
                report.exit_code = 1
                report.error = str(exc)
            except PrerequisiteError as exc:
                report.exit_code = 1
                report.error = str(exc)
            except OperationAborted as exc:
                logger.error("Instance provisioning aborted: %s", exc)
                report.exit_code = 1
                report.error = str(exc)

    report.operations = operations
    report.finished_at = datetime.now().isoformat()
    return report


def main(argv: Optional[Sequence[str]] = None, provider_factory: Optional[ProviderFactory] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except UsageError as exc:
        configure_logging()
        logger.error("%s", exc)
        parser.print_usage(sys.stderr)
        return 1
    if args.help:
        parser.print_help()
        return 0

    _load_env_file()
    overrides = {
        "region": args.region,
        "instance_type": args.instance_type,
        "key_name": args.key_name,
        "company": args.company,
        "departments": args.departments,
        "endpoint_url": args.endpoint_url,
        "log_dir": args.log_dir,
    }
    config_path = args.config or (
        Path(os.environ["CLOUD_PROVISION_CONFIG"]) if os.getenv("CLOUD_PROVISION_CONFIG") else None
    )
    try:
        settings = load_settings(config_path, overrides)
        ctx = build_run_context(settings, run_id=args.run_id)
    except InputValidationError as exc:
        configure_logging()
        logger.error("%s", exc)
        parser.print_usage(sys.stderr)
        return 1

    log_file = configure_logging(ctx.log_file)
    console.print(
        f"[bold green]cloud-provision[/bold green] v{__version__} run {ctx.run_id} for {ctx.company}"
    )
    logger.info(
        "Starting provisioning for %s in %s (departments: %s)",
        ctx.company,
        ctx.region,
        ", ".join(ctx.departments),
    )
    if log_file:
        logger.info("Logging to %s", log_file)

    factory = provider_factory or _default_provider
    report = run(ctx, factory(settings), args)
    print_summary(console, report.operations)

    if args.report:
        try:
            path = write_report(args.report, report)
            console.print(f"[green]Report written to[/green] {path}")
        except OSError as exc:
            logger.warning("Could not write report %s: %s", args.report, exc)
    return report.exit_code if report.exit_code is not None else 1
