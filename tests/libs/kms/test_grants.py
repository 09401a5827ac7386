"""
Test Suite for the grant lifecycle (libs/kms/grants.py).

Verifies:
- Grant names are deterministic and sensitive to every input
- Operation parsing and request parameters
- Values resolve to aliases (alias ARNs directly, key ARNs via lookup)
- create / list / retire across every region of every alias
"""

import base64
from unittest.mock import MagicMock

import pytest

from libs.kms.exceptions import NoAliasForKeyError
from libs.kms.grants import (
    GrantRequest,
    compute_grant_name,
    create_grants,
    list_grants,
    merge_grants,
    parse_operations,
    resolve_values_to_aliases,
    retire_grants,
)
from libs.kms.identity import CallerIdentity
from libs.secrets.exceptions import PartialFailureError, ValidationError
from libs.secrets.models import Value
from tests.conftest import ACCOUNT, REGIONS, FakeRegion, alias_arn, key_arn

CALLER = f"arn:aws:iam::{ACCOUNT}:user/alice"
GRANTEE = f"arn:aws:iam::{ACCOUNT}:role/app"
IDENTITY = CallerIdentity(account=ACCOUNT, arn=CALLER)


def _value(key_id: str, key_manager: str = "kms") -> Value:
    return Value(
        key_id=key_id,
        key_manager=key_manager,
        algorithm="chacha20poly1305",
        key_ciphertext=base64.b64encode(b"wrapped").decode(),
        ciphertext=base64.b64encode(b"ct").decode(),
    )


@pytest.fixture()
def values(aws: dict[str, FakeRegion]) -> list[Value]:
    for fake in aws.values():
        fake.add_alias()
    return [_value(alias_arn(region)) for region in REGIONS]


class TestGrantName:
    """Test suite for compute_grant_name."""

    @pytest.mark.unit()
    def test_deterministic(self) -> None:
        request = GrantRequest.build("db_password", GRANTEE, "Decrypt,RetireGrant")

        name = compute_grant_name(request, CALLER)

        assert name == compute_grant_name(
            GrantRequest.build("db_password", GRANTEE, "RetireGrant, Decrypt"), CALLER
        )
        assert name.startswith("strongbox-")
        assert len(name) == len("strongbox-") + 10

    @pytest.mark.unit()
    @pytest.mark.parametrize(
        "changed",
        [
            GrantRequest.build("api_token", GRANTEE),
            GrantRequest.build("db_password", f"arn:aws:iam::{ACCOUNT}:role/other"),
            GrantRequest.build("db_password", GRANTEE, "Decrypt"),
            GrantRequest.build("db_password", GRANTEE, retiring_principal=CALLER),
        ],
    )
    def test_every_input_changes_name(self, changed: GrantRequest) -> None:
        base = GrantRequest.build("db_password", GRANTEE)

        assert compute_grant_name(changed, CALLER) != compute_grant_name(base, CALLER)

    @pytest.mark.unit()
    def test_all_names_ignores_secret_name(self) -> None:
        db_password = GrantRequest.build("db_password", GRANTEE, all_names=True)
        api_token = GrantRequest.build("api_token", GRANTEE, all_names=True)

        assert compute_grant_name(db_password, CALLER) == compute_grant_name(api_token, CALLER)
        assert compute_grant_name(api_token, CALLER) != compute_grant_name(
            GrantRequest.build("api_token", GRANTEE), CALLER
        )

    @pytest.mark.unit()
    def test_caller_changes_name(self) -> None:
        request = GrantRequest.build("db_password", GRANTEE)

        assert compute_grant_name(request, CALLER) != compute_grant_name(
            request, f"arn:aws:iam::{ACCOUNT}:user/bob"
        )


class TestGrantRequest:
    @pytest.mark.unit()
    def test_kms_params_constrain_to_secret(self) -> None:
        request = GrantRequest.build("db_password", GRANTEE, retiring_principal=CALLER)

        params = request.to_kms_params()

        assert params == {
            "GranteePrincipal": GRANTEE,
            "Operations": ["Decrypt", "RetireGrant"],
            "RetiringPrincipal": CALLER,
            "Constraints": {"EncryptionContextSubset": {"SecretName": "db_password"}},
        }

    @pytest.mark.unit()
    def test_all_names_drops_constraint(self) -> None:
        params = GrantRequest.build("db_password", GRANTEE, all_names=True).to_kms_params()

        assert "Constraints" not in params
        assert "RetiringPrincipal" not in params

    @pytest.mark.unit()
    def test_grantee_required(self) -> None:
        with pytest.raises(ValidationError, match="grantee"):
            GrantRequest.build("db_password", "")

    @pytest.mark.unit()
    def test_parse_operations(self) -> None:
        assert parse_operations(" Encrypt,Decrypt,Decrypt ") == ("Decrypt", "Encrypt")
        with pytest.raises(ValidationError, match="Sign"):
            parse_operations("Decrypt,Sign")
        with pytest.raises(ValidationError, match="At least one"):
            parse_operations(" , ")


class TestResolveValuesToAliases:
    """Test suite for resolve_values_to_aliases."""

    @pytest.mark.unit()
    def test_alias_arns_map_directly(self, region_clients: MagicMock) -> None:
        values = [_value(alias_arn(region)) for region in REGIONS]
        values.append(_value("", key_manager="none"))

        aliases = resolve_values_to_aliases(region_clients, values)

        assert aliases == {"alias/strongbox-default": REGIONS}
        region_clients.kms.assert_not_called()

    @pytest.mark.unit()
    def test_key_arn_resolved_via_alias(
        self, aws: dict[str, FakeRegion], region_clients: MagicMock
    ) -> None:
        aws["us-west-1"].add_alias(key_id="1234abcd-12ab-34cd-56ef-1234567890ab")
        aws["us-west-1"].aliases.insert(
            0,
            {
                "AliasName": "alias/unrelated",
                "AliasArn": f"arn:aws:kms:us-west-1:{ACCOUNT}:alias/unrelated",
                "TargetKeyId": "1234abcd-12ab-34cd-56ef-1234567890ab",
            },
        )

        aliases = resolve_values_to_aliases(region_clients, [_value(key_arn("us-west-1"))])

        assert aliases == {"alias/strongbox-default": ["us-west-1"]}

    @pytest.mark.unit()
    def test_key_without_alias(self, region_clients: MagicMock) -> None:
        with pytest.raises(NoAliasForKeyError):
            resolve_values_to_aliases(region_clients, [_value(key_arn("us-east-1"))])

    @pytest.mark.unit()
    def test_bare_key_id_rejected(self, region_clients: MagicMock) -> None:
        with pytest.raises(ValidationError, match="full KMS ARN"):
            resolve_values_to_aliases(region_clients, [_value("alias/strongbox-default")])


class TestGrantLifecycle:
    """create_grants / list_grants / retire_grants against fake regions."""

    @pytest.mark.unit()
    def test_create_list_retire(
        self, aws: dict[str, FakeRegion], region_clients: MagicMock, values: list[Value]
    ) -> None:
        request = GrantRequest.build("db_password", GRANTEE)

        # Create
        creation = create_grants(region_clients, IDENTITY, values, request)

        assert creation.name == compute_grant_name(request, CALLER)
        document = creation.to_document()
        assert list(document["aliases"]["alias/strongbox-default"]) == REGIONS

        # List
        listed = list_grants(region_clients, values)

        summary = listed["alias/strongbox-default"][creation.name]
        assert summary.grantee_principal == GRANTEE
        assert summary.encryption_context_subset == {"SecretName": "db_password"}
        assert sorted(summary.grant_ids) == REGIONS

        # Retire
        retired = retire_grants(region_clients, values, creation.name)

        assert retired == {"alias/strongbox-default": {region: True for region in REGIONS}}

    @pytest.mark.unit()
    def test_create_twice_is_idempotent(
        self, aws: dict[str, FakeRegion], region_clients: MagicMock, values: list[Value]
    ) -> None:
        request = GrantRequest.build("db_password", GRANTEE)

        first = create_grants(region_clients, IDENTITY, values, request)
        second = create_grants(region_clients, IDENTITY, values, request)

        assert first.to_document() == second.to_document()
        assert all(len(fake.grants) == 1 for fake in aws.values())

    @pytest.mark.unit()
    def test_conflict_in_one_region(
        self, aws: dict[str, FakeRegion], region_clients: MagicMock, values: list[Value]
    ) -> None:
        request = GrantRequest.build("db_password", GRANTEE)
        aws["us-west-2"].grants.append(
            {
                "Name": compute_grant_name(request, CALLER),
                "GrantId": "stale",
                "GranteePrincipal": GRANTEE,
                "Operations": ["Encrypt"],
            }
        )

        with pytest.raises(PartialFailureError) as exc_info:
            create_grants(region_clients, IDENTITY, values, request)

        assert exc_info.value.failed_partitions == ["us-west-2"]

    @pytest.mark.unit()
    def test_no_kms_values(self, region_clients: MagicMock) -> None:
        with pytest.raises(ValidationError, match="No KMS-encrypted values"):
            create_grants(
                region_clients,
                IDENTITY,
                [_value("", key_manager="none")],
                GrantRequest.build("motd", GRANTEE),
            )

    @pytest.mark.unit()
    def test_retire_requires_name(self, region_clients: MagicMock, values: list[Value]) -> None:
        with pytest.raises(ValidationError):
            retire_grants(region_clients, values, "")


@pytest.mark.unit()
def test_merge_grants_groups_by_name() -> None:
    merged = merge_grants(
        {
            "us-west-1": [{"Name": "g1", "GrantId": "b", "GranteePrincipal": GRANTEE}],
            "us-east-1": [
                {"Name": "g1", "GrantId": "a", "GranteePrincipal": GRANTEE},
                {"GrantId": "unnamed", "GranteePrincipal": CALLER, "Operations": ["Decrypt"]},
            ],
        }
    )

    assert list(merged) == ["g1", "unnamed"]
    assert merged["g1"].grant_ids == {"us-east-1": "a", "us-west-1": "b"}
    assert merged["unnamed"].to_document() == {
        "grantee_principal": CALLER,
        "operations": ["Decrypt"],
        "grant_ids": {"us-east-1": "unnamed"},
    }
