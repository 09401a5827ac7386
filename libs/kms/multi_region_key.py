"""
One logical KMS key spread over several regions.

A MultiRegionKey is addressed by a single alias name (alias/strongbox-LABEL)
that exists in every configured region, each pointing at an independent KMS
key. Every operation fans out over the regions concurrently and collects
per-region outcomes; callers decide whether a partial result is acceptable.

Lifecycle of one invocation:
    resolve()  - look up the alias in every region; fails with
                 AliasNotFoundError naming all regions where it is missing
    authoritative_policy() - read and cross-check the key policies
    set_key_policy() / add_grant() / retire_grant() - act in every region

Example:
    >>> mrk = MultiRegionKey.resolve(clients, "alias/strongbox-default",
    ...                              ["us-east-1", "us-west-2"])
    >>> region, policy = mrk.authoritative_policy()
    >>> mrk.set_key_policy(policy)
"""

from __future__ import annotations

import functools
import json
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from libs.common.fanout import Deadline, fan_out
from libs.kms.aliases import AliasInfo, find_alias, list_grants
from libs.kms.arn import Arn
from libs.kms.clients import AwsClientFactory, aws_retry, translate_aws_errors
from libs.kms.exceptions import AliasNotFoundError, GrantConflictError, PolicyMismatchError
from libs.secrets.exceptions import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_POLICY_NAME = "default"

_T = TypeVar("_T")


@dataclass(frozen=True)
class RegionKey:
    """The alias and key backing a MultiRegionKey in one region."""

    region: str
    alias_name: str
    alias_arn: str
    key_arn: str

    @classmethod
    def from_alias(cls, alias: AliasInfo) -> RegionKey:
        arn = Arn.parse(alias.alias_arn)
        key_arn = f"arn:{arn.partition}:kms:{arn.region}:{arn.account}:key/{alias.target_key_id}"
        return cls(
            region=alias.region,
            alias_name=alias.alias_name,
            alias_arn=alias.alias_arn,
            key_arn=key_arn,
        )


@dataclass(frozen=True)
class GrantHandle:
    """Result of creating a grant in one region."""

    grant_id: str
    grant_token: str


def canonical_policy(policy: str) -> str:
    """Compact, key-sorted form of a JSON policy, used for comparison only."""
    return json.dumps(json.loads(policy), sort_keys=True, separators=(",", ":"))


def _grant_matches(existing: Mapping[str, Any], params: Mapping[str, Any]) -> bool:
    return (
        existing.get("GranteePrincipal") == params.get("GranteePrincipal")
        and existing.get("RetiringPrincipal", "") == params.get("RetiringPrincipal", "")
        and sorted(existing.get("Operations", [])) == sorted(params.get("Operations", []))
        and (existing.get("Constraints") or {}) == (params.get("Constraints") or {})
    )


class MultiRegionKey:
    """
    Alias-addressed KMS key present in every one of a set of regions.

    Thread Safety:
        Immutable after resolve(); per-region calls run in fan-out workers
        and return their results to the calling thread.
    """

    def __init__(
        self,
        alias_name: str,
        keys: Mapping[str, RegionKey],
        clients: AwsClientFactory,
        deadline: Deadline | None = None,
    ) -> None:
        self.alias_name = alias_name
        self._keys = dict(keys)
        self._clients = clients
        self._deadline = deadline

    @classmethod
    def resolve(
        cls,
        clients: AwsClientFactory,
        alias_name: str,
        regions: Sequence[str],
        deadline: Deadline | None = None,
    ) -> MultiRegionKey:
        """
        Look up alias_name in every region concurrently.

        Raises:
            ValidationError: no regions given
            PartialFailureError: lookups failed in some regions
            AliasNotFoundError: the alias is missing in one or more regions
        """
        if not regions:
            raise ValidationError("At least one region is required")

        outcome = fan_out(
            {
                region: functools.partial(find_alias, clients, region, alias_name)
                for region in regions
            },
            deadline=deadline,
        )
        outcome.raise_partial_failure(f"resolve {alias_name}")

        missing = [region for region, alias in outcome.results.items() if alias is None]
        if missing:
            raise AliasNotFoundError(alias_name, missing)

        keys = {region: RegionKey.from_alias(outcome.results[region]) for region in regions}
        logger.debug(
            "Resolved multi-region key",
            extra={"context": {"alias": alias_name, "regions": list(regions)}},
        )
        return cls(alias_name, keys, clients, deadline)

    def _for_each_region(self, operation: str, task: Callable[[str], _T]) -> dict[str, _T]:
        """Run task(region) for every region; raise PartialFailureError on any failure."""
        outcome = fan_out(
            {region: functools.partial(task, region) for region in self._keys},
            deadline=self._deadline,
        )
        outcome.raise_partial_failure(operation)
        return outcome.results

    @property
    def regions(self) -> list[str]:
        return list(self._keys)

    def key(self, region: str) -> RegionKey:
        return self._keys[region]

    @aws_retry
    def _get_policy(self, region: str) -> str:
        return self._clients.kms(region).get_key_policy(
            KeyId=self._keys[region].key_arn, PolicyName=DEFAULT_POLICY_NAME
        )["Policy"]

    def get_key_policies(self) -> dict[str, str]:
        """Raw key policy per region."""

        def _fetch(region: str) -> str:
            with translate_aws_errors("kms", "GetKeyPolicy", region=region):
                return self._get_policy(region)

        return self._for_each_region(f"get key policy for {self.alias_name}", _fetch)

    def authoritative_policy(self, force_region: str | None = None) -> tuple[str, str]:
        """
        The policy every region should carry, and the region it came from.

        Without force_region every region's policy must match the first
        region's (compared in canonical form). With force_region that
        region's policy is returned and no comparison is made.

        Raises:
            ValidationError: force_region is not one of the key's regions
            PolicyMismatchError: policies differ between regions
        """
        if force_region is not None and force_region not in self._keys:
            raise ValidationError(
                f"--force-region {force_region} is not one of: {', '.join(self.regions)}"
            )

        policies = self.get_key_policies()
        if force_region is not None:
            logger.info(
                "Using key policy from forced region",
                extra={"context": {"alias": self.alias_name, "region": force_region}},
            )
            return force_region, policies[force_region]

        reference_region = self.regions[0]
        reference = canonical_policy(policies[reference_region])
        for region in self.regions[1:]:
            if canonical_policy(policies[region]) != reference:
                raise PolicyMismatchError(self.alias_name, reference_region, region)
        return reference_region, policies[reference_region]

    def set_key_policy(self, policy: str) -> None:
        """
        Write policy to the key in every region.

        Raises:
            PartialFailureError: the write failed in one or more regions
        """

        def _put(region: str) -> None:
            if self._deadline is not None:
                self._deadline.check("kms:PutKeyPolicy")
            with translate_aws_errors("kms", "PutKeyPolicy", region=region):
                self._clients.kms(region).put_key_policy(
                    KeyId=self._keys[region].key_arn,
                    PolicyName=DEFAULT_POLICY_NAME,
                    Policy=policy,
                )
            logger.info("Key policy updated", extra={"context": {"region": region}})

        self._for_each_region(f"set key policy for {self.alias_name}", _put)

    def get_grants(self) -> dict[str, list[dict[str, Any]]]:
        """Every grant on the key, per region."""
        return self._for_each_region(
            f"list grants for {self.alias_name}",
            lambda region: list_grants(self._clients, region, self._keys[region].key_arn),
        )

    def _add_grant_in_region(
        self, region: str, name: str, params: Mapping[str, Any]
    ) -> GrantHandle:
        key_arn = self._keys[region].key_arn
        for grant in list_grants(self._clients, region, key_arn):
            if grant.get("Name") == name and not _grant_matches(grant, params):
                raise GrantConflictError(name, self.alias_name, region)

        if self._deadline is not None:
            self._deadline.check("kms:CreateGrant")
        # CreateGrant returns the existing grant when name and parameters match
        with translate_aws_errors("kms", "CreateGrant", region=region):
            response = self._clients.kms(region).create_grant(KeyId=key_arn, Name=name, **params)
        logger.info(
            "Grant created",
            extra={"context": {"grant": name, "region": region, "grant_id": response["GrantId"]}},
        )
        return GrantHandle(
            grant_id=response["GrantId"], grant_token=response.get("GrantToken", "")
        )

    def add_grant(self, name: str, params: Mapping[str, Any]) -> dict[str, GrantHandle]:
        """
        Create (or reuse) the grant called name in every region.

        Args:
            name: Deterministic grant name
            params: CreateGrant arguments other than KeyId and Name

        Raises:
            PartialFailureError: creation failed in some regions, including
                GrantConflictError where a different grant holds the name
        """
        return self._for_each_region(
            f"create grant {name}",
            functools.partial(self._add_grant_in_region, name=name, params=params),
        )

    def _retire_in_region(self, region: str, name: str) -> bool:
        key_arn = self._keys[region].key_arn
        grant_ids = [
            grant["GrantId"]
            for grant in list_grants(self._clients, region, key_arn)
            if grant.get("Name") == name
        ]
        if not grant_ids:
            logger.info(
                "Grant not present, nothing to retire",
                extra={"context": {"grant": name, "region": region}},
            )
            return False
        for grant_id in grant_ids:
            if self._deadline is not None:
                self._deadline.check("kms:RetireGrant")
            with translate_aws_errors("kms", "RetireGrant", region=region):
                self._clients.kms(region).retire_grant(KeyId=key_arn, GrantId=grant_id)
            logger.info(
                "Grant retired",
                extra={"context": {"grant": name, "region": region, "grant_id": grant_id}},
            )
        return True

    def retire_grant(self, name: str) -> dict[str, bool]:
        """
        Retire the grant called name in every region.

        A region without the grant is not an error.

        Returns:
            region -> whether a grant was retired there
        """
        return self._for_each_region(
            f"retire grant {name}", functools.partial(self._retire_in_region, name=name)
        )
