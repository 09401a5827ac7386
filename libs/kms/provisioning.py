"""
Provisioning of the multi-region key (`strongbox kms init`).

For every region the provisioner first inspects what already exists (the
CloudFormation stack and the alias), refusing to continue when a region is
in a state that needs a human: a stack whose alias is gone, or an alias
pointing at a disabled key. Regions without the alias then get a new stack
(KMS key + optional roles) and alias, all regions concurrently. Finally the
secrets file's key template is merged with one entry per region.

Regions that already have the alias are left untouched. When only some
regions have it, create_missing_keys must be set; this guards against
silently diverging key sets when the region list is edited.
"""

import functools
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from libs.common.fanout import Deadline, fan_out
from libs.kms.aliases import AliasInfo, describe_key, find_alias
from libs.kms.arn import clean_principals
from libs.kms.clients import AwsClientFactory, translate_aws_errors
from libs.kms.exceptions import DisabledKeyError, OrphanedStackError
from libs.kms.identity import CallerIdentity
from libs.kms.naming import alias_name, stack_name
from libs.kms.stacks import create_stack, key_arn_from_outputs, stack_exists
from libs.secrets.exceptions import NameNotFoundError, ValidationError
from libs.secrets.models import KEY_TEMPLATE_NAME, Key, Value
from libs.secrets.store import FileStore

logger = logging.getLogger(__name__)

RESOLVE_MANUALLY = "Please manually resolve the issues and try again."


@dataclass(frozen=True)
class RegionStatus:
    """What exists in one region before provisioning."""

    region: str
    stack_exists: bool
    alias: AliasInfo | None


@dataclass
class ProvisionResult:
    """Outcome of KeyProvisioner.run()."""

    alias_arns: dict[str, str] = field(default_factory=dict)
    created_regions: list[str] = field(default_factory=list)
    existing_regions: list[str] = field(default_factory=list)


def construct_principals(
    identity: CallerIdentity,
    administrators: str,
    users: str,
) -> tuple[list[str], list[str]]:
    """
    Normalize administrator and user principal lists.

    The caller is always added to both lists so the key never locks out the
    person creating it.

    Raises:
        ValidationError: a resulting list is empty
    """
    partition = identity.partition
    admins = clean_principals(identity.account, f"{administrators},{identity.arn}", partition)
    key_users = clean_principals(identity.account, f"{users},{identity.arn}", partition)
    if not admins:
        raise ValidationError("At least one administrator principal is required")
    if not key_users:
        raise ValidationError("At least one user principal is required")
    return admins, key_users


class KeyProvisioner:
    """
    Creates the per-region stacks and aliases for one label.

    Example:
        >>> provisioner = KeyProvisioner(clients, "default", ["us-east-1", "us-west-2"])
        >>> result = provisioner.run(identity, administrators="", users="")
        >>> sorted(result.alias_arns)
        ['us-east-1', 'us-west-2']
    """

    def __init__(
        self,
        clients: AwsClientFactory,
        label: str,
        regions: Sequence[str],
        deadline: Deadline | None = None,
        stack_create_timeout_seconds: float = 3600,
    ) -> None:
        if not regions:
            raise ValidationError("At least one region is required")
        self._clients = clients
        self.label = label
        self.alias_name = alias_name(label)
        self.stack_name = stack_name(label)
        self.regions = list(regions)
        self._deadline = deadline
        self._stack_create_timeout = stack_create_timeout_seconds

    def _inspect_region(self, region: str) -> RegionStatus:
        has_stack = stack_exists(self._clients, region, self.stack_name)
        alias = find_alias(self._clients, region, self.alias_name)
        if alias is not None:
            metadata = describe_key(self._clients, region, alias.target_key_id)
            if not metadata.get("Enabled", True):
                key_arn = metadata.get("Arn", alias.target_key_id)
                raise DisabledKeyError(self.alias_name, key_arn, region)
        elif has_stack:
            raise OrphanedStackError(self.stack_name, self.alias_name, region)
        return RegionStatus(region=region, stack_exists=has_stack, alias=alias)

    def collect_region_info(self) -> dict[str, RegionStatus]:
        """
        Inspect every region concurrently.

        Raises:
            PartialFailureError: one or more regions are inconsistent or
                could not be inspected; every problem is logged first
        """
        outcome = fan_out(
            {region: functools.partial(self._inspect_region, region) for region in self.regions},
            deadline=self._deadline,
        )
        if not outcome.ok:
            logger.error(RESOLVE_MANUALLY)
        outcome.raise_partial_failure("inspect regions")
        return outcome.results

    def create_key_in_region(
        self,
        region: str,
        administrators: Sequence[str],
        users: Sequence[str],
        create_simple_roles: bool = False,
        allow_iam_policies: bool = True,
        template_url: str | None = None,
    ) -> str:
        """
        Create the key stack and alias in region.

        Returns:
            The alias ARN

        Raises:
            ExternalServiceError: a CloudFormation or KMS call failed
            MissingStackOutputError: the stack has no KeyArn output
            StackOperationError: the stack did not reach CREATE_COMPLETE
        """
        logger.info(
            "Creating key stack",
            extra={"context": {"stack": self.stack_name, "region": region}},
        )
        outputs = create_stack(
            self._clients,
            region,
            self.stack_name,
            parameters={
                "AdministratorPrincipals": ",".join(administrators),
                "UserPrincipals": ",".join(users),
                "KeyDescription": f"Key used for securing secrets ({self.label}).",
                "CreateSimpleRoles": str(create_simple_roles).lower(),
                "AllowIAMPoliciesToControlKeyAccess": str(allow_iam_policies).lower(),
            },
            template_url=template_url,
            timeout_seconds=self._stack_create_timeout,
            deadline=self._deadline,
        )
        key_arn = key_arn_from_outputs(outputs, self.stack_name, region)

        with translate_aws_errors("kms", "CreateAlias", region=region):
            self._clients.kms(region).create_alias(AliasName=self.alias_name, TargetKeyId=key_arn)

        alias = find_alias(self._clients, region, self.alias_name)
        if alias is None:
            raise ValidationError(
                f"Alias {self.alias_name} was created but cannot be found", region=region
            )
        logger.info(
            "Key ready",
            extra={"context": {"alias": alias.alias_arn, "key_arn": key_arn, "region": region}},
        )
        return alias.alias_arn

    def run(
        self,
        identity: CallerIdentity,
        administrators: str = "",
        users: str = "",
        create_missing_keys: bool = False,
        create_simple_roles: bool = False,
        disable_iam_policies: bool = False,
        template_url: str | None = None,
    ) -> ProvisionResult:
        """
        Make sure the alias exists in every region, creating what is missing.

        Raises:
            PartialFailureError: inspection or creation failed in some regions
            ValidationError: only some regions have the alias and
                create_missing_keys is not set, or principal lists are empty
        """
        statuses = self.collect_region_info()
        result = ProvisionResult()
        missing = []
        for region in self.regions:
            alias = statuses[region].alias
            if alias is None:
                missing.append(region)
            else:
                result.alias_arns[region] = alias.alias_arn
                result.existing_regions.append(region)

        if result.existing_regions and missing and not create_missing_keys:
            raise ValidationError(
                f"{self.alias_name} exists in {', '.join(result.existing_regions)} but not in "
                f"{', '.join(missing)}. Re-run with --create-missing-keys to create keys in "
                f"the missing regions"
            )

        if missing:
            admins, key_users = construct_principals(identity, administrators, users)
            create = functools.partial(
                self.create_key_in_region,
                administrators=admins,
                users=key_users,
                create_simple_roles=create_simple_roles,
                allow_iam_policies=not disable_iam_policies,
                template_url=template_url,
            )
            outcome = fan_out(
                {region: functools.partial(create, region) for region in missing},
                deadline=self._deadline,
            )
            outcome.raise_partial_failure(f"create {self.alias_name}")
            result.alias_arns.update(outcome.results)
            result.created_regions = missing

        result.alias_arns = {region: result.alias_arns[region] for region in self.regions}
        return result


def update_template(
    store: FileStore,
    key_ids: Sequence[str],
    algorithm: str,
    key_manager: str = "kms",
) -> list[Key]:
    """
    Merge key_ids into the store's key template.

    Existing entries for other keys are kept; an entry for the same key
    manager and key id is replaced, so re-running with another algorithm
    does not duplicate keys.

    Returns:
        The template's keys after the merge
    """
    try:
        existing = store.get_key_ids()
    except NameNotFoundError:
        existing = []

    merged: dict[str, Key] = {key.template_key: key for key in existing}
    for key_id in key_ids:
        key = Key(key_manager=key_manager, key_id=key_id, algorithm=algorithm)
        merged[key.template_key] = key

    keys = list(merged.values())
    store.put(KEY_TEMPLATE_NAME, [Value.from_key(key) for key in keys])
    return keys
