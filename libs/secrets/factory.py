"""
Factory for the per-invocation secrets runtime.

Each command builds one SecretsRuntime at startup. It holds the algorithm and
key manager registries (never module-level globals) and the command deadline,
and is passed explicitly to the envelope flows.

Registered key managers:
    - "none" → NoOpKeyManager (key-less algorithms)
    - "kms" → AWSKMSKeyManager (AWS KMS data keys)

Example Usage:
    >>> clients = AwsClientFactory(default_region="us-east-1")
    >>> runtime = create_runtime(clients)
    >>> runtime.algorithms.get("chacha20poly1305").needs_key()
    True
    >>> runtime.key_managers.new("kms").label()
    'kms'
"""

import logging
from dataclasses import dataclass

from libs.common.fanout import Deadline
from libs.kms.clients import AwsClientFactory
from libs.secrets.algorithms import AlgorithmRegistry, default_algorithm_registry
from libs.secrets.key_manager import KeyManagerRegistry, NoOpKeyManager
from libs.secrets.kms_backend import AWSKMSKeyManager

logger = logging.getLogger(__name__)


@dataclass
class SecretsRuntime:
    """Registries and deadline shared by one command invocation."""

    algorithms: AlgorithmRegistry
    key_managers: KeyManagerRegistry
    deadline: Deadline | None = None


def create_runtime(
    clients: AwsClientFactory,
    deadline: Deadline | None = None,
) -> SecretsRuntime:
    """
    Build the runtime with every built-in algorithm and key manager.

    Args:
        clients: AWS client factory the KMS key manager will use
        deadline: Optional overall command deadline

    Returns:
        SecretsRuntime ready for encrypt/decrypt flows
    """
    key_managers = KeyManagerRegistry()
    key_managers.register(NoOpKeyManager.LABEL, NoOpKeyManager)
    key_managers.register(AWSKMSKeyManager.LABEL, lambda: AWSKMSKeyManager(clients))

    runtime = SecretsRuntime(
        algorithms=default_algorithm_registry(),
        key_managers=key_managers,
        deadline=deadline,
    )
    logger.debug(
        "Secrets runtime ready",
        extra={
            "context": {
                "algorithms": runtime.algorithms.names(),
                "key_managers": key_managers.labels(),
            }
        },
    )
    return runtime
