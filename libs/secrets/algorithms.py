"""
Symmetric encryption algorithms for secret values.

Each algorithm encrypts a secret's plaintext under the data key minted by a
key manager. Keyed algorithms are AEAD ciphers from the `cryptography`
package and store values as:

    nonce (12 bytes) || ciphertext || tag (16 bytes)

The `none` algorithm stores plaintext as-is and needs no key; it exists for
values that are not sensitive but should live in the same file.

Algorithms are looked up by name through an AlgorithmRegistry that is built
once per process (see default_algorithm_registry()) and passed explicitly to
the components that resolve names.

Example:
    >>> registry = default_algorithm_registry()
    >>> algo = registry.get("chacha20poly1305")
    >>> key = os.urandom(32)
    >>> algo.decrypt(key, algo.encrypt(key, b"hunter2"))
    b'hunter2'
"""

import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Callable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from libs.secrets.exceptions import (
    DecryptionError,
    DuplicateNameError,
    UnknownAlgorithmError,
    ValidationError,
)

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32

DEFAULT_ALGORITHM = "chacha20poly1305"


class Algorithm(ABC):
    """Interface every encryption algorithm implements."""

    name: str = ""

    @abstractmethod
    def needs_key(self) -> bool:
        """Return True if encrypt/decrypt require a data key."""

    @abstractmethod
    def encrypt(self, key: bytes, plaintext: bytes) -> bytes:
        """Encrypt plaintext under key."""

    @abstractmethod
    def decrypt(self, key: bytes, ciphertext: bytes) -> bytes:
        """
        Decrypt ciphertext under key.

        Raises:
            DecryptionError: Ciphertext is malformed or fails authentication
        """


class PlainAlgorithm(Algorithm):
    """Stores values unencrypted."""

    name = "none"

    def needs_key(self) -> bool:
        return False

    def encrypt(self, key: bytes, plaintext: bytes) -> bytes:
        return bytes(plaintext)

    def decrypt(self, key: bytes, ciphertext: bytes) -> bytes:
        return bytes(ciphertext)


class _AEADAlgorithm(Algorithm):
    """Shared nonce handling for the AEAD ciphers."""

    _cipher_factory: Callable[[bytes], AESGCM | ChaCha20Poly1305]

    def needs_key(self) -> bool:
        return True

    def _cipher(self, key: bytes) -> AESGCM | ChaCha20Poly1305:
        if len(key) != KEY_SIZE:
            raise ValidationError(
                f"{self.name} requires a {KEY_SIZE}-byte key, got {len(key)} bytes"
            )
        return type(self)._cipher_factory(key)

    def encrypt(self, key: bytes, plaintext: bytes) -> bytes:
        cipher = self._cipher(key)
        nonce = os.urandom(NONCE_SIZE)
        return nonce + cipher.encrypt(nonce, plaintext, None)

    def decrypt(self, key: bytes, ciphertext: bytes) -> bytes:
        if len(ciphertext) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError(
                f"{self.name} ciphertext too short ({len(ciphertext)} bytes)"
            )
        try:
            cipher = self._cipher(key)
        except ValidationError as e:
            raise DecryptionError(str(e)) from e

        nonce, body = ciphertext[:NONCE_SIZE], ciphertext[NONCE_SIZE:]
        try:
            return cipher.decrypt(nonce, body, None)
        except InvalidTag as e:
            raise DecryptionError(f"{self.name} authentication failed") from e


class ChaCha20Poly1305Algorithm(_AEADAlgorithm):
    """ChaCha20-Poly1305 AEAD with a random 96-bit nonce per value."""

    name = "chacha20poly1305"
    _cipher_factory = ChaCha20Poly1305


class AESGCM256Algorithm(_AEADAlgorithm):
    """AES-256-GCM with a random 96-bit nonce per value."""

    name = "aesgcm256"
    _cipher_factory = AESGCM


class AlgorithmRegistry:
    """
    Name -> Algorithm lookup table.

    Built once at process start and handed to every component that needs to
    resolve algorithm names. Not thread-safe for registration; lookups after
    construction are read-only.
    """

    def __init__(self) -> None:
        self._algorithms: dict[str, Algorithm] = {}

    def register(self, name: str, algorithm: Algorithm) -> None:
        """
        Register an algorithm under name.

        Raises:
            DuplicateNameError: name is already registered
        """
        if name in self._algorithms:
            raise DuplicateNameError("algorithm", name)
        self._algorithms[name] = algorithm
        logger.debug("Registered algorithm", extra={"algorithm": name})

    def get(self, name: str) -> Algorithm:
        """
        Look up an algorithm by name.

        Raises:
            UnknownAlgorithmError: name is not registered
        """
        try:
            return self._algorithms[name]
        except KeyError:
            raise UnknownAlgorithmError(name, self.names()) from None

    def names(self) -> list[str]:
        return sorted(self._algorithms)

    def __contains__(self, name: object) -> bool:
        return name in self._algorithms


def default_algorithm_registry() -> AlgorithmRegistry:
    """Build a registry holding every built-in algorithm."""
    registry = AlgorithmRegistry()
    for algorithm in (PlainAlgorithm(), ChaCha20Poly1305Algorithm(), AESGCM256Algorithm()):
        registry.register(algorithm.name, algorithm)
    return registry
