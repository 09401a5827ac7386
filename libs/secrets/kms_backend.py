"""
AWS KMS Key Manager.

This module implements AWSKMSKeyManager, the "kms" key custodian. Each value
gets its own 256-bit data key from KMS GenerateDataKey; the plaintext data key
encrypts the secret locally and the KMS-wrapped copy is stored next to it.

Architecture:
    - One boto3 KMS client per region via AwsClientFactory
    - Region taken from the key ARN, falling back to the default region
    - Encryption context {"SecretName": <name>} binds every data key to the
      secret it protects; a value copied under another name fails to decrypt
    - Automatic retries (3 attempts, exponential backoff) for transient failures

Security Considerations:
    - Plaintext data keys and secret values are NEVER logged
    - IAM permissions required: kms:GenerateDataKey (write), kms:Decrypt (read)
    - Grants created by `strongbox kms grants create` constrain Decrypt to a
      single SecretName through the same encryption context

Usage Example:
    >>> clients = AwsClientFactory(default_region="us-east-1")
    >>> manager = AWSKMSKeyManager(clients)
    >>> envelope = manager.generate_envelope_key(
    ...     "arn:aws:kms:us-east-1:123456789012:alias/strongbox-default", "db_password"
    ... )
    >>> manager.decrypt(envelope.resolved_id, envelope.ciphertext, "db_password")
"""

import logging

from botocore.exceptions import BotoCoreError, ClientError

from libs.common.fanout import Deadline
from libs.kms.arn import is_arn, region_of
from libs.kms.clients import AwsClientFactory, aws_retry, error_code, error_message
from libs.secrets.exceptions import (
    ContextMismatchError,
    DecryptionDeniedError,
    ExternalServiceError,
)
from libs.secrets.key_manager import EnvelopeKey, KeyManager

logger = logging.getLogger(__name__)

ENCRYPTION_CONTEXT_KEY = "SecretName"

_DENIED_CODES = frozenset(
    {
        "AccessDeniedException",
        "IncorrectKeyException",
        "DisabledException",
        "KMSInvalidStateException",
    }
)


def encryption_context(secret_name: str) -> dict[str, str]:
    return {ENCRYPTION_CONTEXT_KEY: secret_name}


class AWSKMSKeyManager(KeyManager):
    """
    Key custodian backed by AWS KMS data keys.

    Thread Safety:
        Safe to call from fan-out workers; the client factory serializes
        client creation and boto3 clients are thread-safe.
    """

    LABEL = "kms"

    def __init__(self, clients: AwsClientFactory) -> None:
        self._clients = clients

    def label(self) -> str:
        return self.LABEL

    def _region_for(self, key_id: str) -> str | None:
        return region_of(key_id) or self._clients.default_region

    def generate_envelope_key(
        self,
        key_id: str,
        secret_name: str,
        deadline: Deadline | None = None,
    ) -> EnvelopeKey:
        """
        Mint a data key under key_id bound to secret_name.

        The persisted key id is key_id itself when it is already an ARN (an
        alias ARN keeps working across key rotation), otherwise the key ARN
        KMS reports back.

        Raises:
            ExternalServiceError: GenerateDataKey failed
            OperationCancelledError: deadline expired before dispatch
        """
        region = self._region_for(key_id)
        if deadline is not None:
            deadline.check("kms:GenerateDataKey")
        try:
            response = self._generate_data_key_with_retry(key_id, secret_name, region)
        except (ClientError, BotoCoreError) as e:
            raise ExternalServiceError(
                f"Unable to generate data key under {key_id}: {error_message(e)}",
                service="kms",
                region=region,
                operation="GenerateDataKey",
                code=error_code(e),
                secret_name=secret_name,
            ) from e

        resolved_id = key_id if is_arn(key_id) else str(response["KeyId"])
        logger.debug(
            "Generated data key",
            extra={
                "context": {"secret_name": secret_name, "key_id": resolved_id, "region": region}
            },
        )
        return EnvelopeKey(
            plaintext=response["Plaintext"],
            ciphertext=response["CiphertextBlob"],
            resolved_id=resolved_id,
        )

    def decrypt(
        self,
        key_id: str,
        wrapped_key: bytes,
        secret_name: str,
        deadline: Deadline | None = None,
    ) -> bytes:
        """
        Unwrap a data key minted for secret_name.

        Raises:
            ContextMismatchError: KMS rejected the ciphertext/context pair
            DecryptionDeniedError: Caller may not use the key (or key disabled)
            ExternalServiceError: Any other KMS failure
        """
        region = self._region_for(key_id)
        if deadline is not None:
            deadline.check("kms:Decrypt")
        try:
            response = self._decrypt_with_retry(wrapped_key, secret_name, region)
        except ClientError as e:
            code = error_code(e)
            if code == "InvalidCiphertextException":
                raise ContextMismatchError(
                    f"KMS rejected the wrapped key under {key_id}; key_ciphertext may be "
                    f"corrupted or was encrypted for a different name",
                    secret_name=secret_name,
                    region=region,
                ) from e
            if code in _DENIED_CODES:
                raise DecryptionDeniedError(
                    f"KMS denied decryption under {key_id} ({code})",
                    secret_name=secret_name,
                    region=region,
                ) from e
            raise ExternalServiceError(
                f"Unable to decrypt data key under {key_id}: {error_message(e)}",
                service="kms",
                region=region,
                operation="Decrypt",
                code=code,
                secret_name=secret_name,
            ) from e
        except BotoCoreError as e:
            raise ExternalServiceError(
                f"AWS SDK error decrypting data key under {key_id}: {e}",
                service="kms",
                region=region,
                operation="Decrypt",
                code=error_code(e),
                secret_name=secret_name,
            ) from e

        return bytes(response["Plaintext"])

    @aws_retry
    def _generate_data_key_with_retry(
        self, key_id: str, secret_name: str, region: str | None
    ) -> dict:
        return self._clients.kms(region).generate_data_key(
            KeyId=key_id,
            KeySpec="AES_256",
            EncryptionContext=encryption_context(secret_name),
        )

    @aws_retry
    def _decrypt_with_retry(self, wrapped_key: bytes, secret_name: str, region: str | None) -> dict:
        return self._clients.kms(region).decrypt(
            CiphertextBlob=wrapped_key,
            EncryptionContext=encryption_context(secret_name),
        )
