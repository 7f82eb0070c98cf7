"""Region and instance-size acceptance rules."""
from __future__ import annotations

import logging

import pytest

from cloud_provision.validation import (
    InputKind,
    Region,
    parse_region,
    validate,
    validate_instance_type,
    validate_region,
)


@pytest.mark.parametrize("raw", ["us-east-1", "eu-west-3", "ap-southeast-2", "ca-central-1", "sa-east-1", "cn-north-1", "cn-northwest-1"])
def test_known_regions_are_accepted(raw):
    result = validate_region(raw)
    assert result.accepted
    assert result.reason is None
    assert result.value == raw


@pytest.mark.parametrize(
    "raw, fragment",
    [
        ("USEAST1", "three dash-separated parts"),
        ("us-east", "three dash-separated parts"),
        ("US-east-1", "geography prefix"),
        ("xx-east-1", "geography prefix"),
        ("us-up-1", "direction"),
        ("us-east-0", "positive integer"),
        ("us-east-01", "leading zero"),
        ("us-east-one", "positive integer"),
        ("", "three dash-separated parts"),
    ],
)
def test_malformed_regions_are_rejected_with_reason(raw, fragment, caplog):
    caplog.set_level(logging.ERROR)
    result = validate_region(raw)
    assert not result.accepted
    assert fragment in result.reason
    assert any(record.levelno == logging.ERROR for record in caplog.records)


def test_parse_region_returns_parts():
    region = parse_region("ap-northeast-2")
    assert region == Region(prefix="ap", direction="northeast", number=2)
    assert str(region) == "ap-northeast-2"


@pytest.mark.parametrize("raw", ["t2.micro", "t2.small", "t2.medium", "t3.micro", "t3.small", "t3.medium"])
def test_allowed_instance_types(raw):
    assert validate_instance_type(raw).accepted


@pytest.mark.parametrize("raw", ["m5.huge", "T2.MICRO", "t2.micro ", "", "t2"])
def test_unknown_instance_types_are_rejected(raw):
    result = validate_instance_type(raw)
    assert not result.accepted
    assert "allowed instance types" in result.reason


def test_validate_accepts_kind_as_string():
    assert validate("us-west-2", "region").kind is InputKind.REGION
    assert validate("t3.small", "instance-size").kind is InputKind.INSTANCE_SIZE


def test_validate_does_not_mutate_input():
    raw = "USEAST1"
    result = validate(raw, InputKind.REGION)
    assert result.value == "USEAST1"
    assert raw == "USEAST1"
