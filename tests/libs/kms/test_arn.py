"""Tests for ARN parsing and principal normalization (libs/kms/arn.py)."""

import pytest

from libs.kms.arn import Arn, clean_principal, clean_principals, is_arn, region_of
from libs.kms.naming import alias_name, stack_name
from libs.secrets.exceptions import ValidationError

ACCOUNT = "123456789012"


class TestArn:
    @pytest.mark.unit()
    def test_parse_alias(self) -> None:
        arn = Arn.parse(f"arn:aws:kms:us-west-2:{ACCOUNT}:alias/strongbox-default")

        assert arn.region == "us-west-2"
        assert arn.account == ACCOUNT
        assert arn.resource == "alias/strongbox-default"
        assert arn.is_kms_alias
        assert not arn.is_kms_key
        assert str(arn) == f"arn:aws:kms:us-west-2:{ACCOUNT}:alias/strongbox-default"

    @pytest.mark.unit()
    def test_parse_assumed_role_keeps_slashes(self) -> None:
        arn = Arn.parse(f"arn:aws:sts::{ACCOUNT}:assumed-role/ops/session-1")

        assert arn.resource_type == "assumed-role"
        assert arn.resource_id == "ops/session-1"

    @pytest.mark.unit()
    @pytest.mark.parametrize("value", ["", "alias/strongbox-default", "arn:aws", "arn:aws::x:y:z"])
    def test_parse_rejects_non_arns(self, value: str) -> None:
        with pytest.raises(ValidationError):
            Arn.parse(value)

    @pytest.mark.unit()
    def test_region_of(self) -> None:
        assert region_of(f"arn:aws:kms:eu-west-1:{ACCOUNT}:key/abc") == "eu-west-1"
        assert region_of("alias/strongbox-default") is None
        assert region_of("arn:broken") is None
        assert is_arn("arn:aws:kms:x") and not is_arn("key-id")


class TestCleanPrincipal:
    """Test suite for clean_principal / clean_principals."""

    @pytest.mark.unit()
    @pytest.mark.parametrize(
        ("ref", "expected"),
        [
            ("", ""),
            ("  ", ""),
            ("alice", f"arn:aws:iam::{ACCOUNT}:user/alice"),
            ("user/alice", f"arn:aws:iam::{ACCOUNT}:user/alice"),
            ("role/ops", f"arn:aws:iam::{ACCOUNT}:role/ops"),
            (f"arn:aws:iam::{ACCOUNT}:role/ops", f"arn:aws:iam::{ACCOUNT}:role/ops"),
            (
                f"arn:aws:sts::{ACCOUNT}:assumed-role/ops/alice@example.com",
                f"arn:aws:iam::{ACCOUNT}:role/ops",
            ),
        ],
    )
    def test_clean_principal(self, ref: str, expected: str) -> None:
        assert clean_principal(ACCOUNT, ref) == expected

    @pytest.mark.unit()
    def test_partition_is_used(self) -> None:
        expected = f"arn:aws-cn:iam::{ACCOUNT}:user/alice"

        assert clean_principal(ACCOUNT, "alice", "aws-cn") == expected

    @pytest.mark.unit()
    def test_clean_principals_dedupes_and_sorts(self) -> None:
        result = clean_principals(ACCOUNT, "role/ops, alice,,alice,user/alice")

        assert result == [
            f"arn:aws:iam::{ACCOUNT}:role/ops",
            f"arn:aws:iam::{ACCOUNT}:user/alice",
        ]


class TestNaming:
    @pytest.mark.unit()
    def test_names(self) -> None:
        assert alias_name("default") == "alias/strongbox-default"
        assert stack_name("prod_2") == "strongbox-prod_2"

    @pytest.mark.unit()
    @pytest.mark.parametrize("label", ["", "has space", "slash/y", "dot.ted"])
    def test_invalid_labels(self, label: str) -> None:
        with pytest.raises(ValidationError, match="Invalid label"):
            alias_name(label)
