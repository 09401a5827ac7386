#!/usr/bin/env python3
"""
strongbox CLI.

Keep secrets in a YAML file next to your code, encrypted under AWS KMS keys
in several regions.

Commands:
    get / read: Decrypt one secret
    put / write: Encrypt and store one secret
    list: Print the names of stored secrets
    export: Decrypt every secret and print them as YAML
    kms ...: Manage the multi-region key (see kms_commands.py)

Usage:
    strongbox kms init -f secrets.yml
    strongbox put -f secrets.yml db_password 'hunter2'
    strongbox get -f secrets.yml db_password
    AWS_REGION=us-west-2 strongbox export -f secrets.yml
"""

import logging
import sys
from collections.abc import Iterator
from pathlib import Path
from typing import IO

import click
from botocore.exceptions import BotoCoreError, ClientError

from apps.strongbox_cli.context import CommandContext, dump_yaml
from apps.strongbox_cli.kms_commands import kms
from apps.strongbox_cli.options import algorithm_option, filename_option, region_priority_option
from config.settings import get_settings, split_csv
from libs.common.fanout import Deadline
from libs.common.logging import InvocationContext, configure_logging
from libs.kms.clients import error_code
from libs.secrets.envelope import choose_keys, decrypt_with_failover, put_secret
from libs.secrets.exceptions import (
    ContextMismatchError,
    ExternalServiceError,
    PartialFailureError,
    SecretsError,
    ValidationError,
)
from libs.secrets.models import KEY_TEMPLATE_NAME
from libs.secrets.store import FileStore

logger = logging.getLogger(__name__)

ERROR_HINTS = {
    "NoRegionError": "Check or set the AWS_REGION environment variable.",
    "MissingRegion": "Check or set the AWS_REGION environment variable.",
    "ExpiredTokenException": "Refresh your credentials.",
    "ExpiredToken": "Refresh your credentials.",
    "NoCredentialsError": "Configure AWS credentials (environment, profile, or instance role).",
    "InvalidCiphertextException": "key_ciphertext may be corrupted.",
}


def _causes(error: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if isinstance(current, PartialFailureError):
            for failure in current.failures.values():
                yield from _causes(failure)
        current = current.__cause__


def error_hints(error: BaseException) -> list[str]:
    """Remediation hints for the AWS error codes found in error's chain."""
    hints: list[str] = []
    for cause in _causes(error):
        code = None
        if isinstance(cause, ExternalServiceError):
            code = cause.code
        elif isinstance(cause, ContextMismatchError):
            code = "InvalidCiphertextException"
        elif isinstance(cause, (ClientError, BotoCoreError)):
            code = error_code(cause)
        hint = ERROR_HINTS.get(code or "")
        if hint and hint not in hints:
            hints.append(hint)
    return hints


def format_error(error: SecretsError) -> str:
    return "\n".join([str(error), *error_hints(error)])


class StrongboxGroup(click.Group):
    """Click group that turns strongbox errors into a clean non-zero exit."""

    def invoke(self, ctx: click.Context) -> object:
        try:
            return super().invoke(ctx)
        except SecretsError as e:
            logger.debug("Command failed", exc_info=True)
            raise click.ClickException(format_error(e)) from e


def _priorities(obj: CommandContext, region_priority: str | None) -> list[str]:
    if region_priority:
        return split_csv(region_priority)
    return obj.settings.region_priority_list


@click.group(cls=StrongboxGroup)
@click.option(
    "--log-level",
    default=lambda: get_settings().log_level,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Minimum level of log messages written to stderr",
)
@click.option(
    "--log-format",
    default=lambda: get_settings().log_format,
    type=click.Choice(["text", "json"]),
    help="Format of log messages written to stderr",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Overall deadline for the command in seconds",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str, log_format: str, timeout: float | None) -> None:
    """Manage secrets encrypted under multi-region AWS KMS keys."""
    settings = get_settings()
    configure_logging(service_name="strongbox", log_level=log_level, log_format=log_format)
    ctx.with_resource(InvocationContext())
    ctx.obj = CommandContext(
        settings=settings,
        deadline=Deadline(timeout if timeout is not None else settings.command_timeout_seconds),
    )


@cli.command("get")
@click.argument("name")
@filename_option
@region_priority_option
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, writable=True),
    default=None,
    help="Write the plaintext to this file instead of stdout",
)
@click.pass_obj
def get_command(
    obj: CommandContext,
    name: str,
    filename: str,
    region_priority: str | None,
    output: str | None,
) -> None:
    """Decrypt and print the secret NAME."""
    values = FileStore(filename).get(name)
    plaintext = decrypt_with_failover(
        obj.runtime, values, name, _priorities(obj, region_priority)
    )
    if output:
        Path(output).write_bytes(plaintext)
        return
    stdout = click.get_binary_stream("stdout")
    stdout.write(plaintext)
    if sys.stdout.isatty():
        stdout.write(b"\n")
    stdout.flush()


@cli.command("put")
@click.argument("name")
@click.argument("value", required=False)
@filename_option
@click.option(
    "-k",
    "--key-id",
    default=None,
    help=(
        "Comma-separated key ids (full ARNs, or alias/... and key ids when AWS_REGION "
        "is set). Defaults to the keys recorded in the file's key template"
    ),
)
@click.option(
    "-m",
    "--key-manager",
    default=lambda: get_settings().key_manager,
    show_default="kms",
    help="Key manager used with --key-id",
)
@algorithm_option
@click.option(
    "-i",
    "--from-file",
    type=click.File("rb"),
    default=None,
    help="Read the secret from this file instead of the command line",
)
@click.pass_obj
def put_command(
    obj: CommandContext,
    name: str,
    value: str | None,
    filename: str,
    key_id: str | None,
    key_manager: str,
    algorithm: str,
    from_file: IO[bytes] | None,
) -> None:
    """Encrypt VALUE and store it as NAME."""
    if from_file is not None and value:
        raise ValidationError(
            "Please specify either a secret in a positional argument, or use --from-file, "
            "but not both."
        )
    plaintext = from_file.read() if from_file is not None else (value or "").encode("utf-8")

    store = FileStore(filename)
    keys = choose_keys(obj.runtime, store, key_id, key_manager, algorithm)
    put_secret(obj.runtime, store, name, plaintext, keys)


@cli.command("list")
@filename_option
def list_command(filename: str) -> None:
    """Print the names of all secrets in the file."""
    for name in FileStore(filename).secret_names():
        click.echo(name)


@cli.command("export")
@filename_option
@region_priority_option
@click.pass_obj
def export_command(obj: CommandContext, filename: str, region_priority: str | None) -> None:
    """Decrypt every secret and print them as a YAML mapping."""
    store = FileStore(filename)
    priorities = _priorities(obj, region_priority)
    exported: dict[str, str] = {}
    failed: list[str] = []
    for name, values in sorted(store.get_all().items()):
        if name == KEY_TEMPLATE_NAME:
            continue
        try:
            exported[name] = decrypt_with_failover(obj.runtime, values, name, priorities).decode(
                "utf-8"
            )
        except SecretsError as e:
            logger.error("Unable to export %s: %s", name, e)
            failed.append(name)
        except UnicodeDecodeError:
            logger.error("Unable to export %s: plaintext is not UTF-8 text", name)
            failed.append(name)

    if exported:
        click.echo(dump_yaml(exported), nl=False)
    if failed:
        raise click.ClickException(f"there were errors exporting: {', '.join(failed)}")


cli.add_command(get_command, name="read")
cli.add_command(put_command, name="write")
cli.add_command(kms)


if __name__ == "__main__":
    cli()
