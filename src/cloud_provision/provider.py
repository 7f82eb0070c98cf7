"""
Cloud provider boundary.

The provisioning pipeline only talks to a CloudProvider. Every method is an independent,
possibly failing remote call and raises ProviderError when the provider rejects it.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ProviderError

logger = logging.getLogger("cloud_provision.provider")

# Instances in any of these states still count as existing.
LIVE_INSTANCE_STATES = ("pending", "running", "shutting-down", "stopping", "stopped")
MISSING_BUCKET_CODES = {"404", "NoSuchBucket", "NotFound"}
MISSING_KEY_PAIR_CODES = {"InvalidKeyPair.NotFound"}


@dataclass(frozen=True)
class CallerIdentity:
    account: str
    arn: str
    user_id: str = ""


@dataclass(frozen=True)
class MachineImage:
    image_id: str
    name: str
    creation_date: str


class CloudProvider(ABC):
    """Operations the provisioner treats as black-box remote calls."""

    def has_credentials(self) -> bool:
        """Whether credentials resolve locally, before any remote call is made."""
        return True

    @abstractmethod
    def caller_identity(self) -> CallerIdentity:
        """Return the authenticated identity, or raise ProviderError."""

    @abstractmethod
    def bucket_exists(self, name: str) -> bool:
        pass

    @abstractmethod
    def create_bucket(self, name: str, region: str) -> str:
        """Create the bucket and return its provider identifier."""

    @abstractmethod
    def enable_bucket_versioning(self, name: str) -> None:
        pass

    @abstractmethod
    def key_pair_exists(self, key_name: str) -> bool:
        pass

    @abstractmethod
    def latest_image(self, owner: str, name_filter: str) -> Optional[MachineImage]:
        """Return the most recent available image matching the filter, if any."""

    @abstractmethod
    def find_instance(self, name: str) -> Optional[str]:
        """Return the id of a non-terminated instance tagged with ``name``, if any."""

    @abstractmethod
    def create_instance(
        self, image_id: str, instance_type: str, key_name: Optional[str] = None
    ) -> str:
        """Launch one instance and return its id."""

    @abstractmethod
    def tag_instance(self, instance_id: str, tags: Mapping[str, str]) -> None:
        pass


def _error_code(exc: ClientError) -> str:
    return str((exc.response or {}).get("Error", {}).get("Code", ""))


def _translate(operation: str, exc: Exception) -> ProviderError:
    if isinstance(exc, ClientError):
        error = (exc.response or {}).get("Error", {})
        return ProviderError(operation, error.get("Message") or str(exc), code=error.get("Code"))
    return ProviderError(operation, str(exc))


class Boto3Provider(CloudProvider):
    """CloudProvider backed by boto3 clients for STS, S3 and EC2."""

    def __init__(
        self,
        region: str,
        endpoint_url: Optional[str] = None,
        connect_timeout: Optional[float] = None,
        read_timeout: Optional[float] = None,
        session: Optional[boto3.Session] = None,
    ):
        self.region = region
        self.endpoint_url = endpoint_url
        self.session = session or boto3.Session(region_name=region)
        config_kwargs: Dict[str, object] = {
            # Each call is attempted exactly once.
            "retries": {"total_max_attempts": 1, "mode": "standard"},
        }
        if connect_timeout is not None:
            config_kwargs["connect_timeout"] = connect_timeout
        if read_timeout is not None:
            config_kwargs["read_timeout"] = read_timeout
        self._config = Config(**config_kwargs)
        self._clients: Dict[str, object] = {}

    def client(self, service: str):
        if service not in self._clients:
            self._clients[service] = self.session.client(
                service,
                region_name=self.region,
                endpoint_url=self.endpoint_url,
                config=self._config,
            )
            logger.debug("Created %s client for %s", service, self.region)
        return self._clients[service]

    def has_credentials(self) -> bool:
        return self.session.get_credentials() is not None

    def caller_identity(self) -> CallerIdentity:
        try:
            ident = self.client("sts").get_caller_identity()
        except (BotoCoreError, ClientError) as exc:
            raise _translate("GetCallerIdentity", exc) from exc
        return CallerIdentity(
            account=ident.get("Account", ""),
            arn=ident.get("Arn", ""),
            user_id=ident.get("UserId", ""),
        )

    def bucket_exists(self, name: str) -> bool:
        try:
            self.client("s3").head_bucket(Bucket=name)
            return True
        except ClientError as exc:
            if _error_code(exc) in MISSING_BUCKET_CODES:
                return False
            raise _translate("HeadBucket", exc) from exc
        except BotoCoreError as exc:
            raise _translate("HeadBucket", exc) from exc

    def create_bucket(self, name: str, region: str) -> str:
        params: Dict[str, object] = {"Bucket": name}
        if region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": region}
        try:
            response = self.client("s3").create_bucket(**params)
        except (BotoCoreError, ClientError) as exc:
            raise _translate("CreateBucket", exc) from exc
        return response.get("Location") or f"arn:aws:s3:::{name}"

    def enable_bucket_versioning(self, name: str) -> None:
        try:
            self.client("s3").put_bucket_versioning(
                Bucket=name, VersioningConfiguration={"Status": "Enabled"}
            )
        except (BotoCoreError, ClientError) as exc:
            raise _translate("PutBucketVersioning", exc) from exc

    def key_pair_exists(self, key_name: str) -> bool:
        try:
            response = self.client("ec2").describe_key_pairs(KeyNames=[key_name])
        except ClientError as exc:
            if _error_code(exc) in MISSING_KEY_PAIR_CODES:
                return False
            raise _translate("DescribeKeyPairs", exc) from exc
        except BotoCoreError as exc:
            raise _translate("DescribeKeyPairs", exc) from exc
        return bool(response.get("KeyPairs"))

    def latest_image(self, owner: str, name_filter: str) -> Optional[MachineImage]:
        try:
            response = self.client("ec2").describe_images(
                Owners=[owner],
                Filters=[
                    {"Name": "name", "Values": [name_filter]},
                    {"Name": "state", "Values": ["available"]},
                ],
            )
        except (BotoCoreError, ClientError) as exc:
            raise _translate("DescribeImages", exc) from exc
        images = response.get("Images", [])
        if not images:
            return None
        newest = max(images, key=lambda image: image.get("CreationDate", ""))
        return MachineImage(
            image_id=newest["ImageId"],
            name=newest.get("Name", ""),
            creation_date=newest.get("CreationDate", ""),
        )

    def find_instance(self, name: str) -> Optional[str]:
        try:
            response = self.client("ec2").describe_instances(
                Filters=[
                    {"Name": "tag:Name", "Values": [name]},
                    {"Name": "instance-state-name", "Values": list(LIVE_INSTANCE_STATES)},
                ]
            )
        except (BotoCoreError, ClientError) as exc:
            raise _translate("DescribeInstances", exc) from exc
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                if instance.get("InstanceId"):
                    return instance["InstanceId"]
        return None

    def create_instance(
        self, image_id: str, instance_type: str, key_name: Optional[str] = None
    ) -> str:
        params: Dict[str, object] = {
            "ImageId": image_id,
            "InstanceType": instance_type,
            "MinCount": 1,
            "MaxCount": 1,
        }
        if key_name:
            params["KeyName"] = key_name
        try:
            response = self.client("ec2").run_instances(**params)
        except (BotoCoreError, ClientError) as exc:
            raise _translate("RunInstances", exc) from exc
        instances = response.get("Instances", [])
        if not instances:
            raise ProviderError("RunInstances", "no instance returned")
        return instances[0]["InstanceId"]

    def tag_instance(self, instance_id: str, tags: Mapping[str, str]) -> None:
        try:
            self.client("ec2").create_tags(
                Resources=[instance_id],
                Tags=[{"Key": key, "Value": value} for key, value in tags.items()],
            )
        except (BotoCoreError, ClientError) as exc:
            raise _translate("CreateTags", exc) from exc
