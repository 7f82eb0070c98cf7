from __future__ import annotations

import logging

from .errors import PrerequisiteError, ProviderError
from .provider import CallerIdentity, CloudProvider

logger = logging.getLogger("cloud_provision.prerequisites")


def check_prerequisites(provider: CloudProvider) -> CallerIdentity:
    """Fail fast unless the provider is reachable and authenticated."""
    logger.info("Checking prerequisites...")
    if not provider.has_credentials():
        logger.error("AWS credentials are not configured. Run 'aws configure' or export AWS_* variables.")
        raise PrerequisiteError("AWS credentials are not configured")
    try:
        identity = provider.caller_identity()
    except ProviderError as exc:
        logger.error("AWS authentication check failed: %s", exc)
        raise PrerequisiteError(str(exc)) from exc
    logger.info("Authenticated as %s (account %s)", identity.arn, identity.account)
    return identity
