"""
Key manager (key custodian) interface.

A key manager mints per-value data keys and unwraps them again later. The
plaintext data key encrypts the secret locally; only the wrapped form
(EnvelopeKey.ciphertext) is written to the secrets file.

Implementations:
    - NoOpKeyManager ("none"): for algorithms that need no key
    - AWSKMSKeyManager ("kms"): AWS KMS data keys (libs/secrets/kms_backend.py)

Key managers are created by label through a KeyManagerRegistry that maps
labels to factories, so each command gets fresh instances bound to its own
AWS client factory.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field

from libs.common.fanout import Deadline
from libs.secrets.exceptions import DuplicateNameError, UnknownKeyManagerError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnvelopeKey:
    """
    A freshly minted data key. Lives only in memory.

    Attributes:
        plaintext: Raw data key bytes used by the algorithm
        ciphertext: Data key wrapped by the custodian (stored as key_ciphertext)
        resolved_id: Identifier to persist as the value's key_id
    """

    plaintext: bytes = field(repr=False)
    ciphertext: bytes
    resolved_id: str


class KeyManager(ABC):
    """Interface every key custodian implements."""

    @abstractmethod
    def label(self) -> str:
        """Short identifier stored in each value's key_manager field."""

    @abstractmethod
    def generate_envelope_key(
        self,
        key_id: str,
        secret_name: str,
        deadline: Deadline | None = None,
    ) -> EnvelopeKey:
        """
        Mint a data key for secret_name under the custodian key key_id.

        Raises:
            ExternalServiceError: Custodian call failed
            OperationCancelledError: Deadline expired before dispatch
        """

    @abstractmethod
    def decrypt(
        self,
        key_id: str,
        wrapped_key: bytes,
        secret_name: str,
        deadline: Deadline | None = None,
    ) -> bytes:
        """
        Unwrap a data key previously minted for secret_name.

        Raises:
            DecryptionDeniedError: Custodian refused access to the key
            ContextMismatchError: wrapped_key was minted for another name
            ExternalServiceError: Any other custodian failure
        """


class NoOpKeyManager(KeyManager):
    """Custodian for algorithms that do not use a key."""

    LABEL = "none"

    def label(self) -> str:
        return self.LABEL

    def generate_envelope_key(
        self,
        key_id: str,
        secret_name: str,
        deadline: Deadline | None = None,
    ) -> EnvelopeKey:
        return EnvelopeKey(plaintext=b"", ciphertext=b"", resolved_id=key_id)

    def decrypt(
        self,
        key_id: str,
        wrapped_key: bytes,
        secret_name: str,
        deadline: Deadline | None = None,
    ) -> bytes:
        return b""


KeyManagerFactory = Callable[[], KeyManager]


class KeyManagerRegistry:
    """Label -> factory table, built once per process."""

    def __init__(self) -> None:
        self._factories: dict[str, KeyManagerFactory] = {}
        self._instances: dict[str, KeyManager] = {}
        self._lock = threading.Lock()

    def register(self, label: str, factory: KeyManagerFactory) -> None:
        """
        Register a factory under label.

        Raises:
            DuplicateNameError: label is already registered
        """
        if label in self._factories:
            raise DuplicateNameError("key manager", label)
        self._factories[label] = factory

    def new(self, label: str) -> KeyManager:
        """
        Return the key manager registered under label.

        Instances are created lazily and reused for the rest of the command,
        so the KMS custodian shares its per-region client cache.

        Raises:
            UnknownKeyManagerError: label is not registered
        """
        if label not in self._factories:
            raise UnknownKeyManagerError(label, self.labels())
        with self._lock:
            if label not in self._instances:
                self._instances[label] = self._factories[label]()
                logger.debug("Created key manager", extra={"key_manager": label})
            return self._instances[label]

    def labels(self) -> list[str]:
        return sorted(self._factories)
