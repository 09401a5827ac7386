"""Per-invocation state shared by every strongbox command."""

import logging
from dataclasses import dataclass, field

import yaml
from botocore.exceptions import BotoCoreError

from config.settings import Settings
from libs.common.fanout import Deadline
from libs.kms.clients import AwsClientFactory, error_code
from libs.secrets.exceptions import ExternalServiceError
from libs.secrets.factory import SecretsRuntime, create_runtime

logger = logging.getLogger(__name__)


@dataclass
class CommandContext:
    """
    Settings plus lazily created AWS clients and secrets runtime.

    Clients are only built when a command needs AWS, so `list` and key-less
    reads work without credentials or a configured region.
    """

    settings: Settings
    deadline: Deadline = field(default_factory=Deadline)
    _clients: AwsClientFactory | None = None
    _runtime: SecretsRuntime | None = None

    @property
    def clients(self) -> AwsClientFactory:
        if self._clients is None:
            try:
                self._clients = AwsClientFactory(
                    profile_name=self.settings.aws_profile,
                    default_region=self.settings.aws_region or None,
                )
            except BotoCoreError as e:
                raise ExternalServiceError(
                    f"Unable to load AWS configuration: {e}",
                    service="sts",
                    operation="Session",
                    code=error_code(e),
                ) from e
        return self._clients

    @property
    def runtime(self) -> SecretsRuntime:
        if self._runtime is None:
            self._runtime = create_runtime(self.clients, self.deadline)
        return self._runtime


def dump_yaml(document: object) -> str:
    return yaml.safe_dump(document, default_flow_style=False, sort_keys=False)
