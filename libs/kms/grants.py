"""
KMS grant lifecycle for the keys protecting a secret.

Grants let a principal decrypt a secret without being in the key policy. By
default a grant is constrained to the secret's encryption context
({"SecretName": NAME}), so it cannot be used to read other secrets under the
same key.

Grant names are deterministic: the same CreateGrant parameters requested by
the same caller always produce the same name, which makes `grants create`
safe to repeat and lets `grants retire` find the grant again in every region.

Example:
    >>> request = GrantRequest.build("db_password", grantee_arn, "Decrypt,RetireGrant")
    >>> name = compute_grant_name(request, "arn:aws:iam::123456789012:user/alice")
    >>> name == compute_grant_name(request, "arn:aws:iam::123456789012:user/alice")
    True
"""

import hashlib
import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from libs.common.fanout import Deadline
from libs.kms.aliases import find_alias_for_key
from libs.kms.arn import Arn, clean_principal
from libs.kms.clients import AwsClientFactory
from libs.kms.exceptions import NoAliasForKeyError
from libs.kms.identity import CallerIdentity
from libs.kms.multi_region_key import GrantHandle, MultiRegionKey
from libs.kms.naming import GRANT_PREFIX
from libs.secrets.exceptions import ValidationError
from libs.secrets.kms_backend import ENCRYPTION_CONTEXT_KEY, AWSKMSKeyManager
from libs.secrets.models import Value, filter_by_key_manager

logger = logging.getLogger(__name__)


class GrantOperation(str, Enum):
    """KMS operations a grant can allow."""

    DECRYPT = "Decrypt"
    ENCRYPT = "Encrypt"
    GENERATE_DATA_KEY = "GenerateDataKey"
    GENERATE_DATA_KEY_WITHOUT_PLAINTEXT = "GenerateDataKeyWithoutPlaintext"
    RE_ENCRYPT_FROM = "ReEncryptFrom"
    RE_ENCRYPT_TO = "ReEncryptTo"
    CREATE_GRANT = "CreateGrant"
    RETIRE_GRANT = "RetireGrant"
    DESCRIBE_KEY = "DescribeKey"


DEFAULT_OPERATIONS = f"{GrantOperation.DECRYPT.value},{GrantOperation.RETIRE_GRANT.value}"


def parse_operations(operations: str | Iterable[str]) -> tuple[str, ...]:
    """
    Validate and normalize grant operations (sorted, unique).

    Raises:
        ValidationError: empty, or an operation KMS does not support in grants
    """
    if isinstance(operations, str):
        operations = operations.split(",")
    known = {op.value for op in GrantOperation}
    parsed = {op.strip() for op in operations if op.strip()}
    unknown = sorted(parsed - known)
    if unknown:
        raise ValidationError(
            f"Unsupported grant operation(s): {', '.join(unknown)} "
            f"(choose from {', '.join(sorted(known))})"
        )
    if not parsed:
        raise ValidationError("At least one grant operation is required")
    return tuple(sorted(parsed))


@dataclass(frozen=True)
class GrantRequest:
    """Normalized parameters of a grant for one secret."""

    secret_name: str
    grantee_principal: str
    operations: tuple[str, ...]
    retiring_principal: str = ""
    all_names: bool = False

    @classmethod
    def build(
        cls,
        secret_name: str,
        grantee_principal: str,
        operations: str | Iterable[str] = DEFAULT_OPERATIONS,
        retiring_principal: str = "",
        all_names: bool = False,
    ) -> "GrantRequest":
        if not grantee_principal:
            raise ValidationError("A grantee principal is required")
        return cls(
            secret_name=secret_name,
            grantee_principal=grantee_principal,
            operations=parse_operations(operations),
            retiring_principal=retiring_principal,
            all_names=all_names,
        )

    @property
    def encryption_context_subset(self) -> dict[str, str] | None:
        if self.all_names:
            return None
        return {ENCRYPTION_CONTEXT_KEY: self.secret_name}

    def to_kms_params(self) -> dict[str, Any]:
        """CreateGrant arguments other than KeyId and Name."""
        params: dict[str, Any] = {
            "GranteePrincipal": self.grantee_principal,
            "Operations": list(self.operations),
        }
        if self.retiring_principal:
            params["RetiringPrincipal"] = self.retiring_principal
        if self.encryption_context_subset is not None:
            params["Constraints"] = {"EncryptionContextSubset": self.encryption_context_subset}
        return params


def compute_grant_name(request: GrantRequest, caller_arn: str) -> str:
    """
    Deterministic grant name for request made by caller_arn.

    The name is GRANT_PREFIX plus the first 10 hex digits of a SHA-256 over
    the canonical JSON of the CreateGrant parameters and the caller. The
    secret name only contributes through the encryption context constraint,
    so all-names grants for different secrets share a name.
    """
    params = request.to_kms_params()
    params["Operations"] = sorted(params["Operations"])
    payload = json.dumps(
        {"params": params, "caller": caller_arn},
        sort_keys=True,
        separators=(",", ":"),
    )
    return GRANT_PREFIX + hashlib.sha256(payload.encode("utf-8")).hexdigest()[:10]


def resolve_principal(identity: CallerIdentity, ref: str) -> str:
    """Full ARN for a principal reference, relative to the caller's account."""
    return clean_principal(identity.account, ref, identity.partition)


def resolve_values_to_aliases(
    clients: AwsClientFactory, values: Iterable[Value]
) -> dict[str, list[str]]:
    """
    Map the KMS-encrypted values of a secret to alias name -> regions.

    Alias ARNs map directly; key ARNs are resolved to the alias that targets
    the key in its region. Values from other key managers are ignored.

    Raises:
        ValidationError: a KMS key id is not a full ARN
        NoAliasForKeyError: a key ARN has no alias
    """
    aliases: dict[str, set[str]] = {}
    for value in filter_by_key_manager(values, AWSKMSKeyManager.LABEL):
        try:
            arn = Arn.parse(value.key_id)
        except ValidationError as e:
            raise ValidationError(
                f"Cannot manage grants for key id {value.key_id!r}: a full KMS ARN is required"
            ) from e
        if arn.is_kms_alias:
            name = arn.resource
        elif arn.is_kms_key:
            alias = find_alias_for_key(clients, arn.region, value.key_id)
            if alias is None:
                raise NoAliasForKeyError(value.key_id, arn.region)
            name = alias.alias_name
        else:
            raise ValidationError(f"{value.key_id} is not a KMS key or alias ARN")
        aliases.setdefault(name, set()).add(arn.region)
    return {name: sorted(regions) for name, regions in sorted(aliases.items())}


@dataclass
class GrantCreation:
    """Grant name and the per-alias, per-region ids/tokens it produced."""

    name: str
    aliases: dict[str, dict[str, GrantHandle]] = field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "aliases": {
                alias: {
                    region: {"grant_id": handle.grant_id, "grant_token": handle.grant_token}
                    for region, handle in sorted(regions.items())
                }
                for alias, regions in sorted(self.aliases.items())
            },
        }


def create_grants(
    clients: AwsClientFactory,
    identity: CallerIdentity,
    values: Iterable[Value],
    request: GrantRequest,
    deadline: Deadline | None = None,
) -> GrantCreation:
    """
    Create the grant on every alias/region protecting the secret.

    Raises:
        ValidationError: the secret has no KMS-encrypted values
        AliasNotFoundError: an alias is missing in a region
        PartialFailureError: grant creation failed in some regions
    """
    aliases = resolve_values_to_aliases(clients, values)
    if not aliases:
        raise ValidationError(
            "No KMS-encrypted values found", secret_name=request.secret_name
        )

    creation = GrantCreation(name=compute_grant_name(request, identity.arn))
    params = request.to_kms_params()
    for alias, regions in aliases.items():
        mrk = MultiRegionKey.resolve(clients, alias, regions, deadline)
        creation.aliases[alias] = mrk.add_grant(creation.name, params)
    return creation


@dataclass
class GrantSummary:
    """One named grant as seen across the regions of an alias."""

    grantee_principal: str
    operations: list[str]
    retiring_principal: str = ""
    encryption_context_subset: dict[str, str] | None = None
    grant_ids: dict[str, str] = field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {"grantee_principal": self.grantee_principal}
        if self.retiring_principal:
            document["retiring_principal"] = self.retiring_principal
        if self.encryption_context_subset:
            document["encryption_context_subset"] = dict(self.encryption_context_subset)
        document["operations"] = list(self.operations)
        document["grant_ids"] = dict(sorted(self.grant_ids.items()))
        return document


def merge_grants(
    grants_by_region: Mapping[str, Iterable[Mapping[str, Any]]],
) -> dict[str, GrantSummary]:
    """
    Group per-region grant listings by grant name.

    Unnamed grants are keyed by their grant id. Output is sorted by name.
    """
    merged: dict[str, GrantSummary] = {}
    for region in sorted(grants_by_region):
        for grant in grants_by_region[region]:
            name = grant.get("Name") or grant["GrantId"]
            if name not in merged:
                constraints = grant.get("Constraints") or {}
                merged[name] = GrantSummary(
                    grantee_principal=grant.get("GranteePrincipal", ""),
                    operations=list(grant.get("Operations", [])),
                    retiring_principal=grant.get("RetiringPrincipal", ""),
                    encryption_context_subset=constraints.get("EncryptionContextSubset"),
                )
            merged[name].grant_ids[region] = grant["GrantId"]
    return {name: merged[name] for name in sorted(merged)}


def list_grants(
    clients: AwsClientFactory,
    values: Iterable[Value],
    deadline: Deadline | None = None,
) -> dict[str, dict[str, GrantSummary]]:
    """
    Grants on every alias protecting the secret.

    Returns:
        alias -> grant name -> summary; aliases without grants are omitted
    """
    output: dict[str, dict[str, GrantSummary]] = {}
    for alias, regions in resolve_values_to_aliases(clients, values).items():
        mrk = MultiRegionKey.resolve(clients, alias, regions, deadline)
        merged = merge_grants(mrk.get_grants())
        if merged:
            output[alias] = merged
    return output


def retire_grants(
    clients: AwsClientFactory,
    values: Iterable[Value],
    grant_name: str,
    deadline: Deadline | None = None,
) -> dict[str, dict[str, bool]]:
    """
    Retire grant_name on every alias/region protecting the secret.

    Returns:
        alias -> region -> whether a grant was retired there
    """
    if not grant_name:
        raise ValidationError("A grant name is required")
    retired: dict[str, dict[str, bool]] = {}
    for alias, regions in resolve_values_to_aliases(clients, values).items():
        mrk = MultiRegionKey.resolve(clients, alias, regions, deadline)
        retired[alias] = mrk.retire_grant(grant_name)
    return retired
