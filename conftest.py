"""Shared fixtures: a stateful in-memory provider and run contexts."""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple

import pytest

from cloud_provision.config import ProvisionSettings, RunContext, build_run_context
from cloud_provision.errors import ProviderError
from cloud_provision.provider import CallerIdentity, CloudProvider, MachineImage


class FakeProvider(CloudProvider):
    """Remembers what it created so a second run sees everything as existing."""

    def __init__(self) -> None:
        self.buckets: Set[str] = set()
        self.versioned: Set[str] = set()
        self.instances: Dict[str, str] = {}
        self.tags: Dict[str, Dict[str, str]] = {}
        self.key_pairs: Set[str] = {"ops-key"}
        self.images: List[MachineImage] = [
            MachineImage("ami-old", "al2023-ami-2023.1-x86_64", "2023-01-01T00:00:00.000Z"),
            MachineImage("ami-new", "al2023-ami-2023.6-x86_64", "2024-06-01T00:00:00.000Z"),
        ]
        self.credentials = True
        self.authenticated = True
        self.calls: List[Tuple[str, tuple]] = []
        # (operation, argument) -> message; argument None matches any call of that operation.
        self.failures: Dict[Tuple[str, Optional[str]], str] = {}
        self.after_call: Optional[Callable[[str, tuple], None]] = None
        self._next_instance = 0

    def fail(self, operation: str, argument: Optional[str] = None, message: str = "boom") -> None:
        self.failures[(operation, argument)] = message

    def _record(self, operation: str, *args) -> None:
        self.calls.append((operation, args))
        first = str(args[0]) if args else None
        for key in ((operation, first), (operation, None)):
            if key in self.failures:
                raise ProviderError(operation, self.failures[key], code="InjectedFailure")

    def _done(self, operation: str, *args) -> None:
        if self.after_call is not None:
            self.after_call(operation, args)

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def has_credentials(self) -> bool:
        return self.credentials

    def caller_identity(self) -> CallerIdentity:
        self._record("caller_identity")
        if not self.authenticated:
            raise ProviderError("GetCallerIdentity", "The security token included in the request is invalid")
        return CallerIdentity(account="123456789012", arn="arn:aws:iam::123456789012:user/tester")

    def bucket_exists(self, name: str) -> bool:
        self._record("bucket_exists", name)
        self._done("bucket_exists", name)
        return name in self.buckets

    def create_bucket(self, name: str, region: str) -> str:
        self._record("create_bucket", name, region)
        self.buckets.add(name)
        self._done("create_bucket", name, region)
        return f"arn:aws:s3:::{name}"

    def enable_bucket_versioning(self, name: str) -> None:
        self._record("enable_bucket_versioning", name)
        self.versioned.add(name)
        self._done("enable_bucket_versioning", name)

    def key_pair_exists(self, key_name: str) -> bool:
        self._record("key_pair_exists", key_name)
        return key_name in self.key_pairs

    def latest_image(self, owner: str, name_filter: str) -> Optional[MachineImage]:
        self._record("latest_image", owner, name_filter)
        if not self.images:
            return None
        return max(self.images, key=lambda image: image.creation_date)

    def find_instance(self, name: str) -> Optional[str]:
        self._record("find_instance", name)
        self._done("find_instance", name)
        for instance_id, tags in self.tags.items():
            if tags.get("Name") == name:
                return instance_id
        return None

    def create_instance(self, image_id: str, instance_type: str, key_name: Optional[str] = None) -> str:
        self._record("create_instance", image_id, instance_type, key_name)
        self._next_instance += 1
        instance_id = f"i-{self._next_instance:017x}"
        self.instances[instance_id] = image_id
        self._done("create_instance", image_id, instance_type, key_name)
        return instance_id

    def tag_instance(self, instance_id: str, tags: Mapping[str, str]) -> None:
        self._record("tag_instance", instance_id, dict(tags))
        self.tags.setdefault(instance_id, {}).update(tags)
        self._done("tag_instance", instance_id)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def make_context(tmp_path: Path) -> Callable[..., RunContext]:
    def _make(**overrides) -> RunContext:
        settings = replace(ProvisionSettings(log_dir=tmp_path), **overrides)
        return build_run_context(settings, started_at=datetime(2024, 5, 1, 9, 30, 0))

    return _make


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        if type(handler).__module__.startswith("_pytest"):
            continue
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.WARNING)
