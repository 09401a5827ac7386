"""
Data model for the secrets file.

A secrets file maps each secret name to an ordered list of Values, one per
key the secret was encrypted under. The reserved name KEY_TEMPLATE_NAME holds
the default Keys used by future writes; its Values carry only key_id,
key_manager, and algorithm.

On disk each Value is a mapping with the fields key_id, key_manager,
algorithm, key_ciphertext, ciphertext. Empty fields are omitted when writing.
"""

import base64
import binascii
from collections.abc import Iterable, Sequence

from pydantic import BaseModel, ConfigDict, field_validator

from libs.kms.arn import region_of

KEY_TEMPLATE_NAME = "$KEY_TEMPLATE$"


class Key(BaseModel):
    """A (key manager, key id, algorithm) triple a secret can be encrypted under."""

    model_config = ConfigDict(frozen=True)

    key_manager: str
    key_id: str = ""
    algorithm: str

    @property
    def template_key(self) -> str:
        """Identity used when merging template entries."""
        return f"{self.key_manager}{self.key_id}"


class Value(BaseModel):
    """
    One encrypted copy of a secret.

    Attributes:
        key_id: Custodian key identifier (ARN for KMS); empty for key-less values
        key_manager: Label of the key manager that wrapped the data key
        algorithm: Registered algorithm name
        key_ciphertext: Base64 wrapped data key; empty for key-less algorithms
        ciphertext: Base64 algorithm output
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    key_id: str = ""
    key_manager: str = ""
    algorithm: str
    key_ciphertext: str = ""
    ciphertext: str = ""

    @field_validator("ciphertext", "key_ciphertext")
    @classmethod
    def _must_be_base64(cls, value: str) -> str:
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"not valid base64: {e}") from e
        return value

    @property
    def key(self) -> Key:
        return Key(key_manager=self.key_manager, key_id=self.key_id, algorithm=self.algorithm)

    @property
    def region(self) -> str | None:
        return region_of(self.key_id)

    def ciphertext_bytes(self) -> bytes:
        return base64.b64decode(self.ciphertext)

    def key_ciphertext_bytes(self) -> bytes:
        return base64.b64decode(self.key_ciphertext)

    def to_document(self) -> dict[str, str]:
        """Serializable mapping with empty fields omitted."""
        return {name: value for name, value in self.model_dump().items() if value}

    @classmethod
    def from_key(cls, key: Key) -> "Value":
        """Template entry for key."""
        return cls(key_id=key.key_id, key_manager=key.key_manager, algorithm=key.algorithm)


def filter_by_key_manager(values: Iterable[Value], key_manager: str) -> list[Value]:
    return [value for value in values if value.key_manager == key_manager]


def sort_by_region(values: Iterable[Value], priorities: Sequence[str]) -> list[Value]:
    """
    Order values so those in higher-priority regions come first.

    The sort is stable: values in the same priority bucket, and values whose
    region is unknown or unlisted (which sort last), keep their relative order.

    Example:
        >>> [v.region for v in sort_by_region(values, ["us-west-2", "us-east-1"])]
        ['us-west-2', 'us-east-1', 'us-west-1']
    """
    rank = {region: index for index, region in reversed(list(enumerate(priorities)))}
    unlisted = len(priorities)

    def _rank(value: Value) -> int:
        region = value.region
        return rank.get(region, unlisted) if region else unlisted

    return sorted(values, key=_rank)
