"""
Envelope encryption flows: write a secret under every configured key, and
read it back with regional failover.

Write path (put_secret):
    1. Pick keys: explicit --key-id list, a key-less algorithm, or the key
       template stored in the file (choose_keys)
    2. Encrypt once per key, all keys in parallel (encrypt_for_keys); any
       failure fails the whole write and nothing is persisted
    3. Replace the value list for the name, adding the keys as the template
       if the file has none yet, in a single write

Read path (decrypt_with_failover):
    Values are ordered by region priority and tried one at a time; the first
    that decrypts wins. Failures are logged as warnings naming the key
    manager so an operator can see which region was skipped.
"""

import base64
import logging
from collections.abc import Sequence

from libs.common.fanout import fan_out
from libs.secrets.exceptions import NameNotFoundError, SecretsError, ValidationError
from libs.secrets.factory import SecretsRuntime
from libs.secrets.models import KEY_TEMPLATE_NAME, Key, Value, sort_by_region
from libs.secrets.store import NO_TEMPLATE_HINT, FileStore

logger = logging.getLogger(__name__)


def choose_keys(
    runtime: SecretsRuntime,
    store: FileStore,
    key_ids: str | None,
    key_manager: str,
    algorithm: str,
) -> list[Key]:
    """
    Decide which keys a new secret is encrypted under.

    Args:
        key_ids: Comma-separated key ids given on the command line, or None
        key_manager: Key manager label applied to explicit key ids
        algorithm: Algorithm name applied to explicit key ids

    Raises:
        UnknownAlgorithmError: algorithm is not registered
        NameNotFoundError: no explicit keys and the file has no key template
    """
    if key_ids:
        return [
            Key(key_manager=key_manager, key_id=key_id.strip(), algorithm=algorithm)
            for key_id in key_ids.split(",")
            if key_id.strip()
        ]
    if not runtime.algorithms.get(algorithm).needs_key():
        return [Key(key_manager="", key_id="", algorithm=algorithm)]
    try:
        return store.get_key_ids()
    except NameNotFoundError as e:
        raise NameNotFoundError(KEY_TEMPLATE_NAME, hint=NO_TEMPLATE_HINT) from e


def encrypt_one(runtime: SecretsRuntime, key: Key, name: str, plaintext: bytes) -> Value:
    """Encrypt plaintext for name under a single key."""
    algorithm = runtime.algorithms.get(key.algorithm)
    if not algorithm.needs_key():
        return Value(
            algorithm=key.algorithm,
            ciphertext=base64.b64encode(algorithm.encrypt(b"", plaintext)).decode("ascii"),
        )

    key_manager = runtime.key_managers.new(key.key_manager)
    envelope_key = key_manager.generate_envelope_key(key.key_id, name, runtime.deadline)
    ciphertext = algorithm.encrypt(envelope_key.plaintext, plaintext)
    return Value(
        key_id=envelope_key.resolved_id,
        key_manager=key_manager.label(),
        algorithm=key.algorithm,
        key_ciphertext=base64.b64encode(envelope_key.ciphertext).decode("ascii"),
        ciphertext=base64.b64encode(ciphertext).decode("ascii"),
    )


def _dedupe(keys: Sequence[Key]) -> list[Key]:
    seen: set[Key] = set()
    unique = []
    for key in keys:
        if key not in seen:
            seen.add(key)
            unique.append(key)
    return unique


def _partition(key: Key) -> str:
    return f"{key.key_manager}:{key.key_id}:{key.algorithm}"


def encrypt_for_keys(
    runtime: SecretsRuntime,
    keys: Sequence[Key],
    name: str,
    plaintext: bytes,
) -> list[Value]:
    """
    Encrypt plaintext under every key concurrently.

    All-or-nothing: if any key fails, every failure is logged and the first
    one observed is raised. Values come back in key order.

    Raises:
        ValidationError: keys is empty
        SecretsError: the first per-key failure
    """
    unique_keys = _dedupe(keys)
    if not unique_keys:
        raise ValidationError("No keys to encrypt under", secret_name=name)

    outcome = fan_out(
        {
            _partition(key): (lambda key=key: encrypt_one(runtime, key, name, plaintext))
            for key in unique_keys
        },
        deadline=runtime.deadline,
    )
    outcome.raise_first(f"encrypt {name}")
    return [outcome.results[_partition(key)] for key in unique_keys]


def put_secret(
    runtime: SecretsRuntime,
    store: FileStore,
    name: str,
    plaintext: bytes,
    keys: Sequence[Key],
) -> list[Value]:
    """
    Encrypt plaintext under keys and replace the stored values for name.

    The key template is written from keys when the file does not have one, in
    the same write as the values.
    """
    if name == KEY_TEMPLATE_NAME:
        raise ValidationError(f"'{KEY_TEMPLATE_NAME}' is reserved", secret_name=name)

    values = encrypt_for_keys(runtime, keys, name, plaintext)
    entries = {name: values}

    try:
        store.get_key_ids()
    except NameNotFoundError:
        entries[KEY_TEMPLATE_NAME] = [Value.from_key(key) for key in _dedupe(keys)]
        logger.info("Recording key template", extra={"context": {"keys": len(keys)}})

    store.put_many(entries)
    return values


def decrypt_value(runtime: SecretsRuntime, value: Value, name: str) -> bytes:
    """
    Decrypt a single value.

    Raises:
        UnknownAlgorithmError / UnknownKeyManagerError: value names something unregistered
        ValidationError: key_ciphertext presence does not match the algorithm
        CryptoError subclasses: unwrap or decryption failed
    """
    algorithm = runtime.algorithms.get(value.algorithm)
    key = b""
    if algorithm.needs_key():
        if not value.key_ciphertext:
            raise ValidationError(
                f"Value under {value.key_id or 'unknown key'} has no key_ciphertext",
                secret_name=name,
            )
        key_manager = runtime.key_managers.new(value.key_manager)
        key = key_manager.decrypt(
            value.key_id, value.key_ciphertext_bytes(), name, runtime.deadline
        )
    elif value.key_ciphertext:
        raise ValidationError(
            f"Algorithm {value.algorithm} takes no key but key_ciphertext is set",
            secret_name=name,
        )
    return algorithm.decrypt(key, value.ciphertext_bytes())


def decrypt_with_failover(
    runtime: SecretsRuntime,
    values: Sequence[Value],
    name: str,
    priorities: Sequence[str] = (),
) -> bytes:
    """
    Return the plaintext of the first value that decrypts.

    Args:
        values: Every stored value for name
        priorities: Regions to try first, in order

    Raises:
        NameNotFoundError: values is empty
        SecretsError: the error from the last value tried, when all fail
    """
    if not values:
        raise NameNotFoundError(name)

    last_error: SecretsError | None = None
    for value in sort_by_region(values, priorities):
        try:
            return decrypt_value(runtime, value, name)
        except SecretsError as e:
            last_error = e
            logger.warning(
                "Decryption under %s failed: %s",
                value.key_manager or value.algorithm,
                e,
                extra={
                    "context": {
                        "secret_name": name,
                        "key_id": value.key_id,
                        "region": value.region,
                    }
                },
            )
    assert last_error is not None
    raise last_error
