"""
AWS client construction and error translation.

All AWS access goes through an AwsClientFactory so that one command
invocation shares a single boto3 Session and one low-level client per
(service, region). boto3 sessions are not thread-safe, but the clients they
create are; client creation is therefore serialized under a lock while calls
on the clients run concurrently from fan-out workers.

Retries:
    aws_retry wraps individual API calls with 3 attempts and exponential
    backoff (1-5 seconds) for TRANSIENT failures only (throttling, 5xx,
    network errors). Permanent errors such as AccessDeniedException or
    NotFoundException propagate immediately.

Error translation:
    translate_aws_errors() converts ClientError/BotoCoreError into
    ExternalServiceError carrying service, region, operation and AWS error
    code, so the command layer can print one consistent message.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from libs.secrets.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_CODES = frozenset(
    {
        "ThrottlingException",
        "Throttling",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "InternalServiceError",
        "InternalFailure",
        "KMSInternalException",
        "DependencyTimeoutException",
    }
)


def error_code(exception: BaseException) -> str:
    """AWS error code of a ClientError, the class name for other botocore errors."""
    if isinstance(exception, ClientError):
        return str(exception.response.get("Error", {}).get("Code", "Unknown"))
    return type(exception).__name__


def error_message(exception: BaseException) -> str:
    if isinstance(exception, ClientError):
        return str(exception.response.get("Error", {}).get("Message", "")) or str(exception)
    return str(exception)


def is_transient_aws_error(exception: BaseException) -> bool:
    """
    Check if an AWS exception is transient and should be retried.

    Network and SDK errors (BotoCoreError) are always retried, except a
    missing region or credentials, which no amount of retrying fixes.
    """
    if isinstance(exception, BotoCoreError):
        return error_code(exception) not in {"NoRegionError", "NoCredentialsError"}
    if isinstance(exception, ClientError):
        return error_code(exception) in TRANSIENT_ERROR_CODES
    return False


aws_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception(is_transient_aws_error),
    reraise=True,
)


@contextmanager
def translate_aws_errors(
    service: str,
    operation: str,
    region: str | None = None,
    secret_name: str | None = None,
) -> Iterator[None]:
    """
    Re-raise botocore failures inside the block as ExternalServiceError.

    Example:
        >>> with translate_aws_errors("kms", "DescribeKey", region="us-east-1"):
        ...     client.describe_key(KeyId=alias)
    """
    try:
        yield
    except ClientError as e:
        raise ExternalServiceError(
            f"{service}:{operation} failed: {error_message(e)}",
            service=service,
            region=region,
            operation=operation,
            code=error_code(e),
            secret_name=secret_name,
        ) from e
    except BotoCoreError as e:
        raise ExternalServiceError(
            f"AWS SDK error during {service}:{operation}: {e}",
            service=service,
            region=region,
            operation=operation,
            code=error_code(e),
            secret_name=secret_name,
        ) from e


class AwsClientFactory:
    """
    Per-invocation cache of boto3 clients keyed by (service, region).

    Example:
        >>> clients = AwsClientFactory(default_region="us-west-2")
        >>> clients.kms("us-east-1").describe_key(KeyId="alias/strongbox-default")
    """

    def __init__(
        self,
        profile_name: str | None = None,
        default_region: str | None = None,
        session: Any | None = None,
        config: Config | None = None,
    ) -> None:
        self._session = session or boto3.session.Session(
            profile_name=profile_name, region_name=default_region
        )
        self._default_region = default_region
        self._config = config or Config(connect_timeout=10, read_timeout=60)
        self._clients: dict[tuple[str, str | None], Any] = {}
        self._lock = threading.Lock()

    @property
    def default_region(self) -> str | None:
        return self._default_region or self._session.region_name

    def client(self, service: str, region: str | None = None) -> Any:
        region = region or self.default_region
        key = (service, region)
        with self._lock:
            if key not in self._clients:
                logger.debug(
                    "Creating AWS client",
                    extra={"context": {"service": service, "region": region}},
                )
                self._clients[key] = self._session.client(
                    service, region_name=region, config=self._config
                )
            return self._clients[key]

    def kms(self, region: str | None = None) -> Any:
        return self.client("kms", region)

    def cloudformation(self, region: str | None = None) -> Any:
        return self.client("cloudformation", region)

    def sts(self, region: str | None = None) -> Any:
        return self.client("sts", region)
