"""
Secrets Exception Hierarchy.

This module defines the exceptions raised by the secret store, the envelope
encryption flows, and the key custodians. The KMS orchestrator adds its own
subclasses in libs/kms/exceptions.py on top of these bases.

Exception hierarchy:
    SecretsError (base)
    ├── NotFoundError
    │   └── NameNotFoundError - Secret name (or key template) missing from store
    ├── ValidationError - Caller input or stored data is malformed
    │   ├── DuplicateNameError - Registry name registered twice
    │   ├── UnknownAlgorithmError - Algorithm name not in registry
    │   ├── UnknownKeyManagerError - Key manager label not in registry
    │   └── StoreFormatError - Secrets file is not a valid document
    ├── ConsistencyViolationError - Cross-region state disagrees
    ├── ExternalServiceError - AWS call failed (service, region, operation, code)
    ├── CryptoError
    │   ├── DecryptionError - Authentication failed or ciphertext malformed
    │   ├── DecryptionDeniedError - Custodian refused to unwrap the data key
    │   └── ContextMismatchError - Encryption context does not match
    ├── StoreIOError - Secrets file could not be read or written
    ├── OperationCancelledError - Command deadline expired
    └── PartialFailureError - Some partitions of a fan-out failed

All exceptions carry structured context (secret name, region) and never
include plaintext or key material.
"""

from collections.abc import Mapping


class SecretsError(Exception):
    """
    Base exception for all strongbox errors.

    Attributes:
        message: Human-readable error message (MUST NOT include secret values)
        secret_name: Name of the secret involved, if any
        region: AWS region involved, if any

    Example:
        >>> str(SecretsError("Decryption failed", secret_name="db", region="us-west-2"))
        'Decryption failed (secret: db, region: us-west-2)'
    """

    def __init__(
        self,
        message: str,
        secret_name: str | None = None,
        region: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.secret_name = secret_name
        self.region = region

    def _context_parts(self) -> list[str]:
        parts = []
        if self.secret_name:
            parts.append(f"secret: {self.secret_name}")
        if self.region:
            parts.append(f"region: {self.region}")
        return parts

    def __str__(self) -> str:
        parts = self._context_parts()
        if parts:
            return f"{self.message} ({', '.join(parts)})"
        return self.message


class NotFoundError(SecretsError):
    """Base for lookups that found nothing."""


class NameNotFoundError(NotFoundError):
    """
    Raised when a secret name is absent from the store.

    Also raised by FileStore.get_key_ids() when the key template entry has
    not been written yet.
    """

    def __init__(self, secret_name: str, hint: str | None = None) -> None:
        message = f"Name '{secret_name}' not found"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message, secret_name=secret_name)
        self.hint = hint


class ValidationError(SecretsError):
    """Raised when caller input or stored data fails validation."""


class DuplicateNameError(ValidationError):
    """Raised when registering a name that a registry already holds."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"{kind} '{name}' is already registered")
        self.kind = kind
        self.name = name


class UnknownAlgorithmError(ValidationError):
    """Raised when an algorithm name is not registered."""

    def __init__(self, name: str, known: list[str] | None = None) -> None:
        message = f"Unknown algorithm '{name}'"
        if known:
            message = f"{message} (known: {', '.join(known)})"
        super().__init__(message)
        self.name = name


class UnknownKeyManagerError(ValidationError):
    """Raised when a key manager label is not registered."""

    def __init__(self, label: str, known: list[str] | None = None) -> None:
        message = f"Unknown key manager '{label}'"
        if known:
            message = f"{message} (known: {', '.join(known)})"
        super().__init__(message)
        self.label = label


class StoreFormatError(ValidationError):
    """Raised when the secrets file cannot be parsed into names and values."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Malformed secrets file {path}: {reason}")
        self.path = path


class ConsistencyViolationError(SecretsError):
    """Raised when state across regions disagrees in a way that needs manual repair."""


class ExternalServiceError(SecretsError):
    """
    Raised when a call to an external service (KMS, CloudFormation, STS) fails.

    Attributes:
        service: AWS service name ("kms", "cloudformation", "sts")
        operation: API operation that failed (e.g., "GenerateDataKey")
        code: AWS error code when the service returned one
    """

    def __init__(
        self,
        message: str,
        service: str | None = None,
        region: str | None = None,
        operation: str | None = None,
        code: str | None = None,
        secret_name: str | None = None,
    ) -> None:
        super().__init__(message, secret_name=secret_name, region=region)
        self.service = service
        self.operation = operation
        self.code = code

    def _context_parts(self) -> list[str]:
        parts = super()._context_parts()
        if self.service and self.operation:
            parts.append(f"call: {self.service}:{self.operation}")
        if self.code:
            parts.append(f"code: {self.code}")
        return parts


class CryptoError(SecretsError):
    """Base for failures while encrypting or decrypting a value."""


class DecryptionError(CryptoError):
    """Raised when ciphertext fails authentication or is malformed."""


class DecryptionDeniedError(CryptoError):
    """Raised when the key custodian refuses to unwrap a data key."""


class ContextMismatchError(CryptoError):
    """Raised when the wrapped key was bound to a different secret name."""


class StoreIOError(SecretsError):
    """Raised when the secrets file cannot be read or written."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Cannot access secrets file {path}: {reason}")
        self.path = path


class OperationCancelledError(SecretsError):
    """Raised when the command deadline expires before an external call."""


class PartialFailureError(SecretsError):
    """
    Raised when some partitions of a fanned-out operation failed.

    Attributes:
        operation: Name of the fanned-out operation (e.g., "deprovision")
        failures: Partition (usually region) -> exception, in sorted order

    Example:
        >>> err = PartialFailureError("deprovision", {"us-west-1": ValueError("boom")})
        >>> err.failed_partitions
        ['us-west-1']
    """

    def __init__(self, operation: str, failures: Mapping[str, BaseException]) -> None:
        self.operation = operation
        self.failures = {key: failures[key] for key in sorted(failures)}
        details = "; ".join(f"{key}: {exc}" for key, exc in self.failures.items())
        super().__init__(f"{operation} failed in {len(self.failures)} partition(s): {details}")

    @property
    def failed_partitions(self) -> list[str]:
        return list(self.failures)
