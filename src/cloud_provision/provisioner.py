from __future__ import annotations

import hashlib
import logging
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, List, Optional, TypeVar

from .cancellation import CancellationToken
from .config import RunContext
from .errors import OperationAborted, ProviderError, ProvisioningCancelled
from .logging_config import SUCCESS
from .provider import CloudProvider, MachineImage
from .reporting import Outcome, OperationSummary, ProvisioningResult, ResourceKind
from .validation import validate_instance_type

logger = logging.getLogger("cloud_provision.provisioner")

MAX_BUCKET_NAME_LENGTH = 63
BUCKET_DIGEST_LENGTH = 8

T = TypeVar("T")


def bucket_name(ctx: RunContext, unit: str) -> str:
    """Globally scoped bucket name: ``<company>-<unit>-<run id>`` within S3's 63 characters.

    Names that must be shortened keep a digest of the full ``<company>-<unit>`` so that
    departments sharing a long prefix still get distinct buckets.
    """
    suffix = f"-{ctx.run_id}"
    base = f"{ctx.company}-{unit}".lower()
    if len(base) + len(suffix) <= MAX_BUCKET_NAME_LENGTH:
        return base + suffix
    digest = "-" + hashlib.sha1(base.encode("utf-8")).hexdigest()[:BUCKET_DIGEST_LENGTH]
    keep = MAX_BUCKET_NAME_LENGTH - len(suffix) - len(digest)
    return base[:keep].rstrip("-") + digest + suffix


def instance_name(ctx: RunContext, unit: str) -> str:
    return f"{ctx.company}-{unit}-instance".lower()


def _call(token: Optional[CancellationToken], fn: Callable[..., T], *args, **kwargs) -> T:
    if token is not None:
        token.raise_if_cancelled()
    return fn(*args, **kwargs)


@contextmanager
def _keep_partial(summary: OperationSummary) -> Iterator[OperationSummary]:
    try:
        yield summary
    except ProvisioningCancelled as exc:
        exc.partial = summary
        raise


def _log_summary(summary: OperationSummary) -> None:
    label = summary.kind.value.capitalize()
    line = f"{label} provisioning summary: {summary.created} successful, {summary.failed} failed"
    if summary.failed:
        logger.warning(line)
    else:
        logger.info(line)


def provision_buckets(
    ctx: RunContext, provider: CloudProvider, token: Optional[CancellationToken] = None
) -> OperationSummary:
    """Create one versioned bucket per department, skipping buckets that already exist."""
    summary = OperationSummary(kind=ResourceKind.BUCKET)
    logger.info("Provisioning S3 buckets for %d departments in %s", len(ctx.departments), ctx.region)

    with _keep_partial(summary):
        for unit in ctx.departments:
            name = bucket_name(ctx, unit)
            try:
                exists = _call(token, provider.bucket_exists, name)
                if exists:
                    logger.warning("Bucket %s already exists, skipping", name)
                    summary.results.append(
                        ProvisioningResult(
                            kind=ResourceKind.BUCKET,
                            unit=unit,
                            resource_name=name,
                            outcome=Outcome.ALREADY_EXISTS,
                        )
                    )
                    continue
                logger.info("Creating bucket %s for %s", name, unit)
                resource_id = _call(token, provider.create_bucket, name, ctx.region)
            except ProviderError as exc:
                logger.error("Failed to create bucket %s: %s", name, exc)
                summary.results.append(
                    ProvisioningResult(
                        kind=ResourceKind.BUCKET,
                        unit=unit,
                        resource_name=name,
                        outcome=Outcome.FAILED,
                        error=str(exc),
                    )
                )
                continue

            logger.log(SUCCESS, "Created bucket %s", name)
            result = ProvisioningResult(
                kind=ResourceKind.BUCKET,
                unit=unit,
                resource_name=name,
                outcome=Outcome.CREATED,
                resource_id=resource_id,
            )
            summary.results.append(result)
            try:
                _call(token, provider.enable_bucket_versioning, name)
                logger.info("Enabled versioning on %s", name)
            except ProviderError as exc:
                logger.warning("Bucket %s created but versioning could not be enabled: %s", name, exc)
                result.warnings.append(str(exc))

    _log_summary(summary)
    return summary


def _instance_preconditions(
    ctx: RunContext, provider: CloudProvider, token: Optional[CancellationToken]
) -> MachineImage:
    if not validate_instance_type(ctx.instance_type).accepted:
        raise OperationAborted(f"Instance type '{ctx.instance_type}' is not allowed")

    if ctx.key_name:
        try:
            key_found = _call(token, provider.key_pair_exists, ctx.key_name)
        except ProviderError as exc:
            logger.error("Could not look up key pair %s: %s", ctx.key_name, exc)
            raise OperationAborted(f"Key pair lookup failed: {exc}") from exc
        if not key_found:
            logger.error("Key pair '%s' not found in %s", ctx.key_name, ctx.region)
            raise OperationAborted(f"Key pair '{ctx.key_name}' not found in {ctx.region}")

    try:
        image = _call(token, provider.latest_image, ctx.image_owner, ctx.image_name_filter)
    except ProviderError as exc:
        logger.error("Could not resolve base image: %s", exc)
        raise OperationAborted(f"Base image lookup failed: {exc}") from exc
    if image is None:
        logger.error(
            "No image owned by %s matches '%s' in %s", ctx.image_owner, ctx.image_name_filter, ctx.region
        )
        raise OperationAborted(f"No base image matches '{ctx.image_name_filter}'")
    logger.info("Using base image %s (%s)", image.image_id, image.name)
    return image


def provision_instances(
    ctx: RunContext, provider: CloudProvider, token: Optional[CancellationToken] = None
) -> OperationSummary:
    """Launch one tagged instance per department, skipping departments that already have one.

    Raises OperationAborted when the instance type, key pair or base image is unusable;
    in that case no instance is launched.
    """
    logger.info(
        "Provisioning EC2 instances (%s) for %d departments in %s",
        ctx.instance_type,
        len(ctx.departments),
        ctx.region,
    )
    image = _instance_preconditions(ctx, provider, token)
    summary = OperationSummary(kind=ResourceKind.INSTANCE)

    with _keep_partial(summary):
        for unit in ctx.departments:
            name = instance_name(ctx, unit)
            try:
                existing_id = _call(token, provider.find_instance, name)
                if existing_id:
                    logger.warning("Instance %s already exists (%s), skipping", name, existing_id)
                    summary.results.append(
                        ProvisioningResult(
                            kind=ResourceKind.INSTANCE,
                            unit=unit,
                            resource_name=name,
                            outcome=Outcome.ALREADY_EXISTS,
                            resource_id=existing_id,
                        )
                    )
                    continue
                logger.info("Launching instance %s for %s", name, unit)
                instance_id = _call(
                    token, provider.create_instance, image.image_id, ctx.instance_type, ctx.key_name
                )
            except ProviderError as exc:
                logger.error("Failed to create instance %s: %s", name, exc)
                summary.results.append(
                    ProvisioningResult(
                        kind=ResourceKind.INSTANCE,
                        unit=unit,
                        resource_name=name,
                        outcome=Outcome.FAILED,
                        error=str(exc),
                    )
                )
                continue

            logger.log(SUCCESS, "Created instance %s (%s)", name, instance_id)
            result = ProvisioningResult(
                kind=ResourceKind.INSTANCE,
                unit=unit,
                resource_name=name,
                outcome=Outcome.CREATED,
                resource_id=instance_id,
            )
            summary.results.append(result)
            tags = {"Name": name, "department": unit, **dict(ctx.tags)}
            try:
                _call(token, provider.tag_instance, instance_id, tags)
            except ProviderError as exc:
                logger.warning("Instance %s created but tagging failed: %s", instance_id, exc)
                result.warnings.append(str(exc))

    _log_summary(summary)
    return summary


def created_resources(operations: Iterable[OperationSummary]) -> List[ProvisioningResult]:
    return [
        result
        for operation in operations
        for result in operation.results
        if result.outcome is Outcome.CREATED
    ]


def cleanup(operations: Iterable[OperationSummary]) -> None:
    """Report what an interrupted run left behind. Nothing is rolled back."""
    created = created_resources(operations)
    if not created:
        logger.info("Cleanup: no resources were created before the interruption")
        return
    logger.warning("Cleanup: %d resource(s) were created and are left in place:", len(created))
    for result in created:
        logger.warning("  %s %s (%s)", result.kind.value, result.resource_name, result.resource_id)
