"""Caller identity lookup via STS."""

import logging
from dataclasses import dataclass

from libs.kms.arn import Arn
from libs.kms.clients import AwsClientFactory, aws_retry, translate_aws_errors

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallerIdentity:
    account: str
    arn: str
    user_id: str = ""

    @property
    def partition(self) -> str:
        return Arn.parse(self.arn).partition


@aws_retry
def _get_caller_identity(clients: AwsClientFactory) -> dict:
    return clients.sts().get_caller_identity()


def get_caller_identity(clients: AwsClientFactory) -> CallerIdentity:
    """
    Return the account and ARN of the credentials in use.

    Raises:
        ExternalServiceError: STS call failed (e.g. expired credentials)
    """
    with translate_aws_errors("sts", "GetCallerIdentity", region=clients.default_region):
        response = _get_caller_identity(clients)
    identity = CallerIdentity(
        account=response["Account"],
        arn=response["Arn"],
        user_id=response.get("UserId", ""),
    )
    logger.debug("Resolved caller identity", extra={"context": {"arn": identity.arn}})
    return identity
