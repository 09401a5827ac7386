"""ARN parsing and IAM principal normalization.

Pure functions, no AWS calls. Principal references given on the command line
may be full ARNs, `user/NAME`, `role/NAME`, or a bare user name; they are
composed into full IAM ARNs against the caller's account.

Example:
    >>> clean_principal("123456789012", "alice")
    'arn:aws:iam::123456789012:user/alice'
    >>> clean_principals("123456789012", "role/ops, alice,alice")
    ['arn:aws:iam::123456789012:role/ops', 'arn:aws:iam::123456789012:user/alice']
"""

from __future__ import annotations

from dataclasses import dataclass

from libs.secrets.exceptions import ValidationError

DEFAULT_PARTITION = "aws"


@dataclass(frozen=True)
class Arn:
    """Parsed Amazon Resource Name.

    `resource` is everything after the account field, e.g. "alias/strongbox-default"
    or "key/1234abcd-...". For resources of the form TYPE/ID, resource_type and
    resource_id split it at the first slash.
    """

    partition: str
    service: str
    region: str
    account: str
    resource: str

    @classmethod
    def parse(cls, value: str) -> Arn:
        """Parse an ARN string.

        Raises:
            ValidationError: value is not an ARN
        """
        parts = value.split(":", 5)
        if len(parts) != 6 or parts[0] != "arn" or not parts[2]:
            raise ValidationError(f"Not a valid ARN: {value!r}")
        _, partition, service, region, account, resource = parts
        return cls(partition, service, region, account, resource)

    @property
    def resource_type(self) -> str:
        return self.resource.split("/", 1)[0] if "/" in self.resource else ""

    @property
    def resource_id(self) -> str:
        return self.resource.split("/", 1)[1] if "/" in self.resource else self.resource

    @property
    def is_kms_alias(self) -> bool:
        return self.service == "kms" and self.resource_type == "alias"

    @property
    def is_kms_key(self) -> bool:
        return self.service == "kms" and self.resource_type == "key"

    def __str__(self) -> str:
        return ":".join(
            ["arn", self.partition, self.service, self.region, self.account, self.resource]
        )


def is_arn(value: str) -> bool:
    return value.startswith("arn:")


def region_of(key_id: str) -> str | None:
    """Region embedded in an ARN key id, None for bare ids and aliases."""
    if not is_arn(key_id):
        return None
    try:
        return Arn.parse(key_id).region or None
    except ValidationError:
        return None


def clean_principal(account: str, ref: str, partition: str = DEFAULT_PARTITION) -> str:
    """Normalize one principal reference to a full IAM ARN.

    - "" stays ""
    - full ARNs pass through, except STS assumed-role session ARNs, which map
      to the IAM role they were assumed from
    - "user/NAME" and "role/NAME" are qualified with the account
    - anything else is treated as an IAM user name
    """
    ref = ref.strip()
    if not ref:
        return ""
    if is_arn(ref):
        arn = Arn.parse(ref)
        if arn.service == "sts" and arn.resource_type == "assumed-role":
            role_name = arn.resource_id.split("/", 1)[0]
            return f"arn:{arn.partition}:iam::{arn.account}:role/{role_name}"
        return ref
    if ref.startswith(("user/", "role/")):
        return f"arn:{partition}:iam::{account}:{ref}"
    return f"arn:{partition}:iam::{account}:user/{ref}"


def clean_principals(
    account: str, refs: str | list[str], partition: str = DEFAULT_PARTITION
) -> list[str]:
    """Normalize a comma-separated (or pre-split) list of principal references.

    Entries are stripped, empties dropped, and the result is deduplicated and
    sorted so the same inputs always yield the same list.
    """
    if isinstance(refs, str):
        refs = refs.split(",")
    cleaned = {clean_principal(account, ref, partition) for ref in refs}
    cleaned.discard("")
    return sorted(cleaned)
