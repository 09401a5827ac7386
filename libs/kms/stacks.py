"""CloudFormation stack operations for the per-region key stacks.

Waits are bounded: the waiter's attempt count is derived from an explicit
timeout (and the command deadline when one is set), so a stuck stack fails
with StackOperationError instead of hanging the command.
"""

import logging
import math
from collections.abc import Mapping
from importlib import resources
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from libs.common.fanout import Deadline
from libs.kms.clients import (
    AwsClientFactory,
    aws_retry,
    error_code,
    error_message,
    translate_aws_errors,
)
from libs.kms.exceptions import MissingStackOutputError, StackOperationError
from libs.secrets.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

KEY_ARN_OUTPUT = "KeyArn"
WAITER_DELAY_SECONDS = 10
TEMPLATE_RESOURCE = "key_stack.template.json"


def default_template_body() -> str:
    """CloudFormation template that creates the KMS key and optional roles."""
    return resources.files("libs.kms.data").joinpath(TEMPLATE_RESOURCE).read_text(encoding="utf-8")


@aws_retry
def _describe_stack(clients: AwsClientFactory, region: str, stack_name: str) -> dict[str, Any]:
    return clients.cloudformation(region).describe_stacks(StackName=stack_name)["Stacks"][0]


def describe_stack(
    clients: AwsClientFactory, region: str, stack_name: str
) -> dict[str, Any] | None:
    """
    Current description of stack_name, or None when it does not exist.

    CloudFormation reports a missing stack as a ValidationError whose message
    contains "does not exist".
    """
    try:
        return _describe_stack(clients, region, stack_name)
    except ClientError as e:
        if error_code(e) == "ValidationError" and "does not exist" in error_message(e):
            return None
        raise ExternalServiceError(
            f"cloudformation:DescribeStacks failed: {error_message(e)}",
            service="cloudformation",
            region=region,
            operation="DescribeStacks",
            code=error_code(e),
        ) from e
    except BotoCoreError as e:
        raise ExternalServiceError(
            f"AWS SDK error during cloudformation:DescribeStacks: {e}",
            service="cloudformation",
            region=region,
            operation="DescribeStacks",
            code=error_code(e),
        ) from e


def stack_exists(clients: AwsClientFactory, region: str, stack_name: str) -> bool:
    return describe_stack(clients, region, stack_name) is not None


def _waiter_config(timeout_seconds: float, deadline: Deadline | None) -> dict[str, int]:
    bounded = deadline.bound(timeout_seconds) if deadline is not None else timeout_seconds
    return {
        "Delay": WAITER_DELAY_SECONDS,
        "MaxAttempts": max(1, math.ceil(bounded / WAITER_DELAY_SECONDS)),
    }


def _wait(
    clients: AwsClientFactory,
    region: str,
    stack_name: str,
    waiter_name: str,
    operation: str,
    timeout_seconds: float,
    deadline: Deadline | None,
) -> None:
    waiter = clients.cloudformation(region).get_waiter(waiter_name)
    try:
        waiter.wait(
            StackName=stack_name,
            WaiterConfig=_waiter_config(timeout_seconds, deadline),
        )
    except WaiterError as e:
        raise StackOperationError(
            stack_name, operation, region, f"{waiter_name} did not succeed: {e}"
        ) from e


def create_stack(
    clients: AwsClientFactory,
    region: str,
    stack_name: str,
    parameters: Mapping[str, str],
    template_body: str | None = None,
    template_url: str | None = None,
    timeout_seconds: float = 3600,
    deadline: Deadline | None = None,
) -> dict[str, str]:
    """
    Create stack_name and wait for CREATE_COMPLETE.

    Returns:
        The stack's outputs as a name -> value mapping

    Raises:
        ExternalServiceError: CreateStack was rejected
        StackOperationError: the stack did not finish within timeout_seconds
    """
    request: dict[str, Any] = {
        "StackName": stack_name,
        "Capabilities": ["CAPABILITY_IAM"],
        "Parameters": [
            {"ParameterKey": key, "ParameterValue": value} for key, value in parameters.items()
        ],
    }
    if template_url:
        request["TemplateURL"] = template_url
    else:
        request["TemplateBody"] = template_body or default_template_body()

    if deadline is not None:
        deadline.check("cloudformation:CreateStack")
    with translate_aws_errors("cloudformation", "CreateStack", region=region):
        stack_id = clients.cloudformation(region).create_stack(**request)["StackId"]
    logger.info(
        "Waiting for stack creation",
        extra={"context": {"stack": stack_name, "stack_id": stack_id, "region": region}},
    )

    _wait(
        clients,
        region,
        stack_id,
        "stack_create_complete",
        "CreateStack",
        timeout_seconds,
        deadline,
    )

    with translate_aws_errors("cloudformation", "DescribeStacks", region=region):
        stack = _describe_stack(clients, region, stack_id)
    return {item["OutputKey"]: item["OutputValue"] for item in stack.get("Outputs", [])}


def key_arn_from_outputs(outputs: Mapping[str, str], stack_name: str, region: str) -> str:
    if KEY_ARN_OUTPUT not in outputs:
        raise MissingStackOutputError(stack_name, KEY_ARN_OUTPUT, region)
    return outputs[KEY_ARN_OUTPUT]


def delete_stack(
    clients: AwsClientFactory,
    region: str,
    stack_name: str,
    timeout_seconds: float = 7200,
    deadline: Deadline | None = None,
) -> None:
    """
    Delete stack_name and wait for DELETE_COMPLETE.

    Raises:
        ExternalServiceError: DeleteStack was rejected
        StackOperationError: the stack was not deleted within timeout_seconds
    """
    if deadline is not None:
        deadline.check("cloudformation:DeleteStack")
    with translate_aws_errors("cloudformation", "DeleteStack", region=region):
        clients.cloudformation(region).delete_stack(StackName=stack_name)
    _wait(
        clients,
        region,
        stack_name,
        "stack_delete_complete",
        "DeleteStack",
        timeout_seconds,
        deadline,
    )
