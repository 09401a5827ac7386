"""
KMS Orchestrator Exceptions.

Subclasses of the strongbox bases (libs/secrets/exceptions.py) raised while
managing the multi-region key, its policy, and its grants.

Exception hierarchy (additions):
    NotFoundError
    ├── AliasNotFoundError - Alias missing in one or more regions
    └── NoAliasForKeyError - A key ARN has no alias pointing at it
    ValidationError
    ├── InvalidPolicyError - Edited policy is not valid JSON
    └── EditorError
        ├── EditorNotConfiguredError - Neither VISUAL nor EDITOR is set
        ├── EmptyEditResultError - Editor produced an empty document
        └── UnchangedEditError - Editor returned the input unchanged
    ConsistencyViolationError
    ├── PolicyMismatchError - Key policies differ between regions
    ├── OrphanedStackError - Stack exists but its alias does not
    ├── DisabledKeyError - Alias points at a disabled key
    └── GrantConflictError - Same grant name, different parameters
    ExternalServiceError
    ├── MissingStackOutputError - Stack finished without a KeyArn output
    └── StackOperationError - Stack create/delete did not complete
"""

from collections.abc import Iterable

from libs.secrets.exceptions import (
    ConsistencyViolationError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)


class AliasNotFoundError(NotFoundError):
    """
    Raised when a KMS alias does not exist in one or more regions.

    Attributes:
        alias_name: The alias that was looked up
        regions: Every region in which it was missing (sorted)
    """

    def __init__(self, alias_name: str, regions: Iterable[str]) -> None:
        self.alias_name = alias_name
        self.regions = sorted(regions)
        super().__init__(f"Alias {alias_name} not found in: {', '.join(self.regions)}")


class NoAliasForKeyError(NotFoundError):
    """Raised when no alias in the key's region targets the given key ARN."""

    def __init__(self, key_arn: str, region: str | None = None) -> None:
        super().__init__(f"No alias found for key {key_arn}", region=region)
        self.key_arn = key_arn


class InvalidPolicyError(ValidationError):
    """Raised when an edited key policy does not parse as JSON."""


class EditorError(ValidationError):
    """Base for interactive editing outcomes that abort the edit."""


class EditorNotConfiguredError(EditorError):
    def __init__(self) -> None:
        super().__init__(
            "No editor found. Set your editor preference with VISUAL or EDITOR "
            "environment variables."
        )


class EmptyEditResultError(EditorError):
    def __init__(self) -> None:
        super().__init__("No change: the new policy is empty.")


class UnchangedEditError(EditorError):
    def __init__(self) -> None:
        super().__init__("No change: the new policy is the same as the existing policy.")


class PolicyMismatchError(ConsistencyViolationError):
    """
    Raised when a key's policy differs between regions.

    Attributes:
        reference_region: Region whose policy was used for comparison
        divergent_region: First region found with a different policy
    """

    def __init__(self, alias_name: str, reference_region: str, divergent_region: str) -> None:
        super().__init__(
            f"Key policy for {alias_name} in {divergent_region} differs from "
            f"{reference_region}. Reconcile the policies manually or re-run with "
            f"--force-region to use one region's policy as the source"
        )
        self.alias_name = alias_name
        self.reference_region = reference_region
        self.divergent_region = divergent_region


class OrphanedStackError(ConsistencyViolationError):
    """Raised when the CloudFormation stack exists but the alias does not."""

    def __init__(self, stack_name: str, alias_name: str, region: str) -> None:
        super().__init__(
            f"Stack {stack_name} exists but alias {alias_name} does not. "
            f"Delete the stack with: aws cloudformation delete-stack "
            f"--region {region} --stack-name {stack_name}",
            region=region,
        )
        self.stack_name = stack_name
        self.alias_name = alias_name


class DisabledKeyError(ConsistencyViolationError):
    """Raised when an alias points at a key that is disabled."""

    def __init__(self, alias_name: str, key_arn: str, region: str) -> None:
        super().__init__(
            f"Alias {alias_name} points to disabled key {key_arn}. Re-enable it with: "
            f"aws kms enable-key --region {region} --key-id {key_arn}",
            region=region,
        )
        self.alias_name = alias_name
        self.key_arn = key_arn


class GrantConflictError(ConsistencyViolationError):
    """Raised when a grant with the computed name exists with other parameters."""

    def __init__(self, grant_name: str, alias_name: str, region: str) -> None:
        super().__init__(
            f"Grant {grant_name} on {alias_name} already exists with different "
            f"parameters. Retire it before creating it again",
            region=region,
        )
        self.grant_name = grant_name
        self.alias_name = alias_name


class MissingStackOutputError(ExternalServiceError):
    def __init__(self, stack_name: str, output: str, region: str) -> None:
        super().__init__(
            f"Stack {stack_name} does not have an output named {output}",
            service="cloudformation",
            region=region,
            operation="DescribeStacks",
        )
        self.stack_name = stack_name


class StackOperationError(ExternalServiceError):
    """Raised when waiting for a stack create/delete fails or times out."""

    def __init__(self, stack_name: str, operation: str, region: str, reason: str) -> None:
        super().__init__(
            f"Stack {stack_name}: {reason}",
            service="cloudformation",
            region=region,
            operation=operation,
        )
        self.stack_name = stack_name
