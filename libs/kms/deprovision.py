"""
Removal of the per-region aliases and stacks (`strongbox kms deprovision`).

Without destructive=True nothing is changed: each region reports what would
be deleted. With it, the alias is deleted and the stack deleted and waited
on (bounded by stack_delete_timeout_seconds). All regions are processed even
when some fail; failures are reported together at the end.
"""

import functools
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from libs.common.fanout import Deadline, fan_out
from libs.kms.aliases import find_alias
from libs.kms.clients import AwsClientFactory, translate_aws_errors
from libs.kms.naming import alias_name, stack_name
from libs.kms.stacks import delete_stack, stack_exists

logger = logging.getLogger(__name__)

DEFAULT_STACK_DELETE_TIMEOUT_SECONDS = 2 * 60 * 60
DESTRUCTIVE_HINT = "To delete these resources, re-run this command with --destructive."


@dataclass(frozen=True)
class RegionDeprovisionReport:
    region: str
    alias_found: bool
    target_key_id: str | None
    stack_found: bool
    alias_deleted: bool = False
    stack_deleted: bool = False


def _deprovision_region(
    clients: AwsClientFactory,
    region: str,
    alias: str,
    stack: str,
    destructive: bool,
    timeout_seconds: float,
    deadline: Deadline | None,
) -> RegionDeprovisionReport:
    existing_alias = find_alias(clients, region, alias)
    alias_deleted = False
    if existing_alias is not None:
        logger.info(
            "Found alias",
            extra={
                "context": {
                    "alias": alias,
                    "region": region,
                    "key_id": existing_alias.target_key_id,
                }
            },
        )
        if destructive:
            if deadline is not None:
                deadline.check("kms:DeleteAlias")
            with translate_aws_errors("kms", "DeleteAlias", region=region):
                clients.kms(region).delete_alias(AliasName=alias)
            alias_deleted = True
            logger.info("Deleted alias", extra={"context": {"alias": alias, "region": region}})

    has_stack = stack_exists(clients, region, stack)
    stack_deleted = False
    if has_stack:
        logger.info("Found stack", extra={"context": {"stack": stack, "region": region}})
        if destructive:
            delete_stack(clients, region, stack, timeout_seconds=timeout_seconds, deadline=deadline)
            stack_deleted = True
            logger.info("Deleted stack", extra={"context": {"stack": stack, "region": region}})

    return RegionDeprovisionReport(
        region=region,
        alias_found=existing_alias is not None,
        target_key_id=existing_alias.target_key_id if existing_alias else None,
        stack_found=has_stack,
        alias_deleted=alias_deleted,
        stack_deleted=stack_deleted,
    )


def deprovision(
    clients: AwsClientFactory,
    label: str,
    regions: Sequence[str],
    destructive: bool = False,
    stack_delete_timeout_seconds: float = DEFAULT_STACK_DELETE_TIMEOUT_SECONDS,
    deadline: Deadline | None = None,
) -> dict[str, RegionDeprovisionReport]:
    """
    Report, and optionally delete, the alias and stack in every region.

    Returns:
        region -> report, in sorted region order

    Raises:
        PartialFailureError: one or more regions failed; raised only after
            every region has finished
    """
    alias = alias_name(label)
    stack = stack_name(label)
    task = functools.partial(
        _deprovision_region,
        clients,
        alias=alias,
        stack=stack,
        destructive=destructive,
        timeout_seconds=stack_delete_timeout_seconds,
        deadline=deadline,
    )
    outcome = fan_out(
        {region: functools.partial(task, region=region) for region in regions},
        deadline=deadline,
    )
    outcome.raise_partial_failure("deprovision")
    return outcome.results
