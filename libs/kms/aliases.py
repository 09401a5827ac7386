"""KMS alias, key, and grant lookups within a single region."""

import logging
from dataclasses import dataclass
from typing import Any

from libs.kms.clients import AwsClientFactory, aws_retry, translate_aws_errors
from libs.kms.naming import ALIAS_PREFIX

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AliasInfo:
    """An alias as returned by ListAliases."""

    region: str
    alias_name: str
    alias_arn: str
    target_key_id: str


def _to_alias(region: str, entry: dict[str, Any]) -> AliasInfo:
    return AliasInfo(
        region=region,
        alias_name=entry["AliasName"],
        alias_arn=entry["AliasArn"],
        target_key_id=entry.get("TargetKeyId", ""),
    )


@aws_retry
def _list_aliases(clients: AwsClientFactory, region: str, **kwargs: Any) -> list[dict[str, Any]]:
    paginator = clients.kms(region).get_paginator("list_aliases")
    entries: list[dict[str, Any]] = []
    for page in paginator.paginate(**kwargs):
        entries.extend(page.get("Aliases", []))
    return entries


def find_alias(clients: AwsClientFactory, region: str, alias_name: str) -> AliasInfo | None:
    """
    Look up alias_name in region.

    Returns:
        AliasInfo, or None when the alias does not exist there

    Raises:
        ExternalServiceError: ListAliases failed
    """
    with translate_aws_errors("kms", "ListAliases", region=region):
        entries = _list_aliases(clients, region)
    for entry in entries:
        if entry.get("AliasName") == alias_name:
            return _to_alias(region, entry)
    return None


def find_alias_for_key(clients: AwsClientFactory, region: str, key_id: str) -> AliasInfo | None:
    """
    Alias that targets key_id in region.

    Aliases managed by strongbox win over any other alias on the same key.
    """
    with translate_aws_errors("kms", "ListAliases", region=region):
        entries = _list_aliases(clients, region, KeyId=key_id)
    aliases = [_to_alias(region, entry) for entry in entries]
    if not aliases:
        return None
    managed = [alias for alias in aliases if alias.alias_name.startswith(ALIAS_PREFIX)]
    return (managed or aliases)[0]


@aws_retry
def _describe_key(clients: AwsClientFactory, region: str, key_id: str) -> dict[str, Any]:
    return clients.kms(region).describe_key(KeyId=key_id)["KeyMetadata"]


def describe_key(clients: AwsClientFactory, region: str, key_id: str) -> dict[str, Any]:
    """KeyMetadata for key_id (key id, key ARN, or alias name)."""
    with translate_aws_errors("kms", "DescribeKey", region=region):
        return _describe_key(clients, region, key_id)


@aws_retry
def _list_grants(clients: AwsClientFactory, region: str, key_id: str) -> list[dict[str, Any]]:
    paginator = clients.kms(region).get_paginator("list_grants")
    grants: list[dict[str, Any]] = []
    for page in paginator.paginate(KeyId=key_id):
        grants.extend(page.get("Grants", []))
    return grants


def list_grants(clients: AwsClientFactory, region: str, key_id: str) -> list[dict[str, Any]]:
    """Every grant on key_id in region."""
    with translate_aws_errors("kms", "ListGrants", region=region):
        return _list_grants(clients, region, key_id)
