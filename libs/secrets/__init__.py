"""
Envelope-encrypted secrets kept in a YAML file.

Each secret is stored once per key: a fresh data key encrypts the plaintext
locally and a key manager wraps the data key, so any one key can recover
the secret on its own.

Architecture (Abstract Factory Pattern):
    - Algorithm / AlgorithmRegistry: local AEAD ciphers (algorithms.py)
    - KeyManager / KeyManagerRegistry: data key custodians (key_manager.py)
    - AWSKMSKeyManager: AWS KMS custodian (kms_backend.py)
    - create_runtime(): registries with every built-in entry (factory.py)
    - FileStore: atomic YAML persistence (store.py)
    - put_secret() / decrypt_with_failover(): the flows (envelope.py)

Quick Start:
    >>> from libs.secrets.envelope import decrypt_with_failover
    >>> from libs.secrets.factory import create_runtime
    >>> from libs.secrets.store import FileStore
    >>> runtime = create_runtime(clients)
    >>> values = FileStore("secrets.yml").get("db_password")
    >>> plaintext = decrypt_with_failover(runtime, values, "db_password", ["us-west-2"])

Security Requirements:
    - Plaintext and data keys are never logged (only names, key ids, regions)
    - Every KMS call binds the data key to the secret name (encryption context)

Submodules are imported directly; only the exception hierarchy is re-exported
here because libs.kms depends on it.
"""

from libs.secrets.exceptions import (
    ConsistencyViolationError,
    CryptoError,
    ExternalServiceError,
    NameNotFoundError,
    NotFoundError,
    PartialFailureError,
    SecretsError,
    ValidationError,
)

__all__ = [
    "SecretsError",
    "NotFoundError",
    "NameNotFoundError",
    "ValidationError",
    "ConsistencyViolationError",
    "ExternalServiceError",
    "CryptoError",
    "PartialFailureError",
]
