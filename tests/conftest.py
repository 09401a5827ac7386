"""
Shared fixtures for strongbox tests.

AWS is never contacted: tests hand MagicMock client factories to the code
under test, and the settings cache is cleared around every test so
environment variables set by one test do not leak into the next.
"""

import logging
from collections.abc import Iterator
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from config.settings import get_settings
from libs.common.fanout import Deadline
from libs.secrets.algorithms import default_algorithm_registry
from libs.secrets.exceptions import ContextMismatchError
from libs.secrets.factory import SecretsRuntime
from libs.secrets.key_manager import EnvelopeKey, KeyManager, KeyManagerRegistry, NoOpKeyManager

ACCOUNT = "123456789012"
REGIONS = ["us-east-1", "us-west-1", "us-west-2"]


def alias_arn(region: str, label: str = "default") -> str:
    return f"arn:aws:kms:{region}:{ACCOUNT}:alias/strongbox-{label}"


def key_arn(region: str, key_id: str = "1234abcd-12ab-34cd-56ef-1234567890ab") -> str:
    return f"arn:aws:kms:{region}:{ACCOUNT}:key/{key_id}"


def client_error(code: str, message: str = "", operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


class FakeKeyManager(KeyManager):
    """
    In-memory custodian: "wraps" a data key by prefixing the secret name.

    Unwrapping under another name fails, mirroring the KMS encryption context.
    Regions listed in broken_regions fail with the configured error.
    """

    def __init__(self, broken_regions: dict[str, Exception] | None = None) -> None:
        self.broken_regions = broken_regions or {}
        self.generated: list[tuple[str, str]] = []

    def label(self) -> str:
        return "kms"

    def _check(self, key_id: str) -> None:
        for region, error in self.broken_regions.items():
            if f":{region}:" in key_id:
                raise error

    def generate_envelope_key(
        self, key_id: str, secret_name: str, deadline: Deadline | None = None
    ) -> EnvelopeKey:
        self._check(key_id)
        self.generated.append((key_id, secret_name))
        data_key = (key_id.encode("utf-8") * 32)[:32]
        return EnvelopeKey(
            plaintext=data_key,
            ciphertext=secret_name.encode("utf-8") + b"|" + data_key,
            resolved_id=key_id,
        )

    def decrypt(
        self,
        key_id: str,
        wrapped_key: bytes,
        secret_name: str,
        deadline: Deadline | None = None,
    ) -> bytes:
        self._check(key_id)
        name, _, data_key = wrapped_key.partition(b"|")
        if name != secret_name.encode("utf-8"):
            raise ContextMismatchError("wrapped key belongs to another name")
        return data_key


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _reset_root_logger() -> Iterator[None]:
    yield
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)


@pytest.fixture()
def fake_key_manager() -> FakeKeyManager:
    return FakeKeyManager()


@pytest.fixture()
def runtime(fake_key_manager: FakeKeyManager) -> SecretsRuntime:
    """Runtime whose "kms" label resolves to the in-memory FakeKeyManager."""
    key_managers = KeyManagerRegistry()
    key_managers.register(NoOpKeyManager.LABEL, NoOpKeyManager)
    key_managers.register("kms", lambda: fake_key_manager)
    return SecretsRuntime(algorithms=default_algorithm_registry(), key_managers=key_managers)


@pytest.fixture()
def mock_clients() -> MagicMock:
    """AwsClientFactory stand-in returning one MagicMock client per service."""
    clients = MagicMock()
    clients.default_region = "us-east-1"
    return clients


class FakeRegion:
    """
    MagicMock KMS and CloudFormation clients for one region with in-memory
    aliases, grants, and key policy.
    """

    def __init__(self, region: str) -> None:
        self.region = region
        self.aliases: list[dict] = []
        self.grants: list[dict] = []
        self.policy = '{"Version": "2012-10-17", "Statement": []}'
        self.kms = MagicMock(name=f"kms-{region}")
        self.kms.get_paginator.side_effect = self._paginator
        self.kms.get_key_policy.side_effect = lambda **kwargs: {"Policy": self.policy}
        self.kms.describe_key.side_effect = lambda **kwargs: {
            "KeyMetadata": {"Arn": key_arn(region), "Enabled": True}
        }
        self.kms.create_grant.side_effect = self._create_grant
        self.cloudformation = MagicMock(name=f"cloudformation-{region}")
        self.cloudformation.describe_stacks.side_effect = client_error(
            "ValidationError", "Stack with id strongbox-default does not exist"
        )

    def add_alias(self, label: str = "default", key_id: str | None = None) -> None:
        self.aliases.append(
            {
                "AliasName": f"alias/strongbox-{label}",
                "AliasArn": alias_arn(self.region, label),
                "TargetKeyId": key_id or f"key-{self.region}",
            }
        )

    def _paginator(self, name: str) -> MagicMock:
        paginator = MagicMock()
        if name == "list_aliases":
            paginator.paginate.side_effect = lambda **kwargs: [
                {
                    "Aliases": [
                        alias
                        for alias in self.aliases
                        if "KeyId" not in kwargs or kwargs["KeyId"].endswith(alias["TargetKeyId"])
                    ]
                }
            ]
        elif name == "list_grants":
            paginator.paginate.side_effect = lambda **kwargs: [{"Grants": list(self.grants)}]
        return paginator

    def _create_grant(self, **kwargs: object) -> dict:
        for grant in self.grants:
            if grant["Name"] == kwargs["Name"]:
                return {"GrantId": grant["GrantId"], "GrantToken": "token"}
        grant_id = f"grant-{self.region}-{len(self.grants)}"
        grant = {key: value for key, value in kwargs.items() if key != "KeyId"}
        grant["GrantId"] = grant_id
        self.grants.append(grant)
        return {"GrantId": grant_id, "GrantToken": "token"}


@pytest.fixture()
def aws() -> dict[str, FakeRegion]:
    return {region: FakeRegion(region) for region in REGIONS}


@pytest.fixture()
def region_clients(aws: dict[str, FakeRegion]) -> MagicMock:
    """AwsClientFactory stand-in routing each region to its FakeRegion."""
    clients = MagicMock()
    clients.default_region = "us-east-1"
    clients.kms.side_effect = lambda region=None: aws[region or "us-east-1"].kms
    clients.cloudformation.side_effect = (
        lambda region=None: aws[region or "us-east-1"].cloudformation
    )
    return clients
