"""
Test Suite for AWSKMSKeyManager (libs/secrets/kms_backend.py).

Verifies:
- GenerateDataKey request shape (AES_256, SecretName encryption context)
- Region selection from the key ARN, falling back to the default region
- Persisted key id for ARNs versus bare ids
- Decrypt error mapping (context mismatch, denied, other)
- Deadline checked before dispatch
"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import NoRegionError

from libs.common.fanout import Deadline
from libs.secrets.exceptions import (
    ContextMismatchError,
    DecryptionDeniedError,
    ExternalServiceError,
    OperationCancelledError,
)
from libs.secrets.kms_backend import AWSKMSKeyManager, encryption_context
from tests.conftest import alias_arn, client_error, key_arn


class TestGenerateEnvelopeKey:
    """Test suite for AWSKMSKeyManager.generate_envelope_key."""

    @pytest.mark.unit()
    def test_generate_uses_region_from_arn(self, mock_clients: MagicMock) -> None:
        # Arrange
        kms_client = mock_clients.kms.return_value
        kms_client.generate_data_key.return_value = {
            "Plaintext": b"k" * 32,
            "CiphertextBlob": b"wrapped",
            "KeyId": key_arn("us-west-2"),
        }
        manager = AWSKMSKeyManager(mock_clients)

        # Act
        envelope = manager.generate_envelope_key(alias_arn("us-west-2"), "db_password")

        # Assert
        mock_clients.kms.assert_called_with("us-west-2")
        kms_client.generate_data_key.assert_called_once_with(
            KeyId=alias_arn("us-west-2"),
            KeySpec="AES_256",
            EncryptionContext={"SecretName": "db_password"},
        )
        assert envelope.plaintext == b"k" * 32
        assert envelope.ciphertext == b"wrapped"
        assert envelope.resolved_id == alias_arn("us-west-2")

    @pytest.mark.unit()
    def test_bare_key_id_resolves_to_reported_arn(self, mock_clients: MagicMock) -> None:
        mock_clients.kms.return_value.generate_data_key.return_value = {
            "Plaintext": b"k" * 32,
            "CiphertextBlob": b"wrapped",
            "KeyId": key_arn("us-east-1"),
        }
        manager = AWSKMSKeyManager(mock_clients)

        envelope = manager.generate_envelope_key("alias/strongbox-default", "db_password")

        mock_clients.kms.assert_called_with("us-east-1")
        assert envelope.resolved_id == key_arn("us-east-1")

    @pytest.mark.unit()
    def test_generate_failure_is_external_service_error(self, mock_clients: MagicMock) -> None:
        mock_clients.kms.return_value.generate_data_key.side_effect = client_error(
            "NotFoundException", "Alias not found"
        )
        manager = AWSKMSKeyManager(mock_clients)

        with pytest.raises(ExternalServiceError) as exc_info:
            manager.generate_envelope_key(alias_arn("us-west-1"), "db_password")

        assert exc_info.value.code == "NotFoundException"
        assert exc_info.value.operation == "GenerateDataKey"
        assert exc_info.value.region == "us-west-1"

    @pytest.mark.unit()
    def test_no_region_error_is_not_retried(self, mock_clients: MagicMock) -> None:
        mock_clients.kms.return_value.generate_data_key.side_effect = NoRegionError()
        manager = AWSKMSKeyManager(mock_clients)

        with pytest.raises(ExternalServiceError) as exc_info:
            manager.generate_envelope_key("alias/strongbox-default", "db_password")

        assert exc_info.value.code == "NoRegionError"
        assert mock_clients.kms.return_value.generate_data_key.call_count == 1

    @pytest.mark.unit()
    def test_expired_deadline_skips_call(self, mock_clients: MagicMock) -> None:
        deadline = Deadline()
        deadline.cancel()
        manager = AWSKMSKeyManager(mock_clients)

        with pytest.raises(OperationCancelledError):
            manager.generate_envelope_key(alias_arn("us-east-1"), "db_password", deadline)

        mock_clients.kms.return_value.generate_data_key.assert_not_called()


class TestDecrypt:
    """Test suite for AWSKMSKeyManager.decrypt."""

    @pytest.mark.unit()
    def test_decrypt_passes_context(self, mock_clients: MagicMock) -> None:
        kms_client = mock_clients.kms.return_value
        kms_client.decrypt.return_value = {"Plaintext": b"k" * 32}
        manager = AWSKMSKeyManager(mock_clients)

        data_key = manager.decrypt(alias_arn("us-west-1"), b"wrapped", "db_password")

        assert data_key == b"k" * 32
        mock_clients.kms.assert_called_with("us-west-1")
        kms_client.decrypt.assert_called_once_with(
            CiphertextBlob=b"wrapped", EncryptionContext=encryption_context("db_password")
        )

    @pytest.mark.unit()
    def test_invalid_ciphertext_is_context_mismatch(self, mock_clients: MagicMock) -> None:
        mock_clients.kms.return_value.decrypt.side_effect = client_error(
            "InvalidCiphertextException"
        )
        manager = AWSKMSKeyManager(mock_clients)

        with pytest.raises(ContextMismatchError) as exc_info:
            manager.decrypt(alias_arn("us-west-1"), b"wrapped", "other_name")

        assert exc_info.value.secret_name == "other_name"
        assert exc_info.value.region == "us-west-1"

    @pytest.mark.unit()
    @pytest.mark.parametrize(
        "code", ["AccessDeniedException", "DisabledException", "KMSInvalidStateException"]
    )
    def test_denied_codes(self, mock_clients: MagicMock, code: str) -> None:
        mock_clients.kms.return_value.decrypt.side_effect = client_error(code)
        manager = AWSKMSKeyManager(mock_clients)

        with pytest.raises(DecryptionDeniedError, match=code):
            manager.decrypt(alias_arn("us-east-1"), b"wrapped", "db_password")

    @pytest.mark.unit()
    def test_other_errors_are_external_service_errors(self, mock_clients: MagicMock) -> None:
        mock_clients.kms.return_value.decrypt.side_effect = client_error(
            "ValidationException", "bad request"
        )
        manager = AWSKMSKeyManager(mock_clients)

        with pytest.raises(ExternalServiceError) as exc_info:
            manager.decrypt(alias_arn("us-east-1"), b"wrapped", "db_password")

        assert exc_info.value.code == "ValidationException"
        assert "bad request" in str(exc_info.value)
