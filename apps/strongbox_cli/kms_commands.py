"""
`strongbox kms` commands: provision and manage the multi-region key.

Commands:
    get-caller-identity: Show the AWS identity in use
    init: Create the key in every region and record it in the secrets file
    deprovision: Report (or with --destructive, delete) the aliases and stacks
    edit-key-policy: Edit the key policy once, apply it to every region
    grants create|list|retire: Manage per-secret KMS grants
"""

import logging

import click

from apps.strongbox_cli.context import CommandContext, dump_yaml
from apps.strongbox_cli.options import (
    algorithm_option,
    filename_option,
    label_option,
    regions_option,
)
from config.settings import split_csv
from libs.kms.deprovision import DESTRUCTIVE_HINT, deprovision
from libs.kms.editor import ExternalEditor
from libs.kms.grants import (
    DEFAULT_OPERATIONS,
    GrantRequest,
    create_grants,
    list_grants,
    resolve_principal,
    retire_grants,
)
from libs.kms.identity import get_caller_identity
from libs.kms.multi_region_key import MultiRegionKey
from libs.kms.naming import alias_name
from libs.kms.policy import edit_key_policy
from libs.kms.provisioning import KeyProvisioner, update_template
from libs.secrets.exceptions import ValidationError
from libs.secrets.store import FileStore

logger = logging.getLogger(__name__)


def _region_list(regions: str) -> list[str]:
    parsed = split_csv(regions)
    if not parsed:
        raise ValidationError("At least one region is required")
    return parsed


@click.group()
def kms() -> None:
    """Manage the AWS KMS keys protecting the secrets."""


@kms.command("get-caller-identity")
@click.pass_obj
def get_caller_identity_command(obj: CommandContext) -> None:
    """Print the AWS account and ARN of the current credentials."""
    identity = get_caller_identity(obj.clients)
    click.echo(dump_yaml({"account": identity.account, "arn": identity.arn}), nl=False)


@kms.command("init")
@filename_option
@label_option
@regions_option
@algorithm_option
@click.option("--administrators", default="", help="Comma-separated key administrators")
@click.option("--users", default="", help="Comma-separated key users")
@click.option(
    "--create-missing-keys",
    is_flag=True,
    help="Create keys in regions where the alias is missing while others have it",
)
@click.option("--create-simple-roles", is_flag=True, help="Create encrypt/read/admin IAM roles")
@click.option(
    "--disable-iam-policies",
    is_flag=True,
    help="Only the key policy controls access; IAM policies are ignored",
)
@click.option(
    "--cloudformation-template-url",
    default=None,
    help="Use this CloudFormation template instead of the built-in one",
)
@click.pass_obj
def init_command(
    obj: CommandContext,
    filename: str,
    label: str,
    regions: str,
    algorithm: str,
    administrators: str,
    users: str,
    create_missing_keys: bool,
    create_simple_roles: bool,
    disable_iam_policies: bool,
    cloudformation_template_url: str | None,
) -> None:
    """Create the key in every region and add it to the file's key template."""
    obj.runtime.algorithms.get(algorithm)
    provisioner = KeyProvisioner(
        obj.clients,
        label,
        _region_list(regions),
        deadline=obj.deadline,
        stack_create_timeout_seconds=obj.settings.stack_create_timeout_seconds,
    )
    identity = get_caller_identity(obj.clients)
    result = provisioner.run(
        identity,
        administrators=administrators,
        users=users,
        create_missing_keys=create_missing_keys,
        create_simple_roles=create_simple_roles,
        disable_iam_policies=disable_iam_policies,
        template_url=cloudformation_template_url,
    )
    keys = update_template(FileStore(filename), list(result.alias_arns.values()), algorithm)
    click.echo(
        dump_yaml(
            {
                "alias": provisioner.alias_name,
                "created": result.created_regions,
                "existing": result.existing_regions,
                "keys": [key.key_id for key in keys],
            }
        ),
        nl=False,
    )


@kms.command("deprovision")
@label_option
@regions_option
@click.option("--destructive", is_flag=True, help="Actually delete the aliases and stacks")
@click.pass_obj
def deprovision_command(obj: CommandContext, label: str, regions: str, destructive: bool) -> None:
    """Show, and with --destructive delete, the keys' aliases and stacks."""
    reports = deprovision(
        obj.clients,
        label,
        _region_list(regions),
        destructive=destructive,
        stack_delete_timeout_seconds=obj.settings.stack_delete_timeout_seconds,
        deadline=obj.deadline,
    )
    document = {
        region: {
            "alias": report.alias_found,
            "target_key_id": report.target_key_id,
            "stack": report.stack_found,
            "deleted": report.alias_deleted or report.stack_deleted,
        }
        for region, report in reports.items()
    }
    click.echo(dump_yaml(document), nl=False)
    found = any(report.alias_found or report.stack_found for report in reports.values())
    if not destructive and found:
        click.echo(DESTRUCTIVE_HINT, err=True)


@kms.command("edit-key-policy")
@label_option
@regions_option
@click.option(
    "--force-region",
    default=None,
    help="Take the current policy from this region even if regions disagree",
)
@click.pass_obj
def edit_key_policy_command(
    obj: CommandContext, label: str, regions: str, force_region: str | None
) -> None:
    """Edit the key policy in $VISUAL/$EDITOR and save it in every region."""
    mrk = MultiRegionKey.resolve(
        obj.clients, alias_name(label), _region_list(regions), obj.deadline
    )
    edit_key_policy(mrk, ExternalEditor(), force_region=force_region)
    click.echo("New policy saved.")


@kms.group("grants")
def grants() -> None:
    """Manage KMS grants that allow decrypting individual secrets."""


@grants.command("create")
@click.argument("name")
@filename_option
@click.option(
    "-g",
    "--grantee-principal",
    required=True,
    help="Principal receiving the grant (ARN, user/NAME, role/NAME, or user name)",
)
@click.option("--retiring-principal", default="", help="Principal allowed to retire the grant")
@click.option(
    "-o",
    "--operations",
    default=DEFAULT_OPERATIONS,
    show_default=True,
    help="Comma-separated KMS operations the grant allows",
)
@click.option(
    "--all-names",
    is_flag=True,
    help="Do not restrict the grant to NAME; it then applies to every secret under the key",
)
@click.pass_obj
def grants_create_command(
    obj: CommandContext,
    name: str,
    filename: str,
    grantee_principal: str,
    retiring_principal: str,
    operations: str,
    all_names: bool,
) -> None:
    """Create a grant on every key protecting NAME."""
    values = FileStore(filename).get(name)
    identity = get_caller_identity(obj.clients)
    request = GrantRequest.build(
        secret_name=name,
        grantee_principal=resolve_principal(identity, grantee_principal),
        operations=operations,
        retiring_principal=resolve_principal(identity, retiring_principal),
        all_names=all_names,
    )
    creation = create_grants(obj.clients, identity, values, request, obj.deadline)
    click.echo(dump_yaml(creation.to_document()), nl=False)


@grants.command("list")
@click.argument("name")
@filename_option
@click.pass_obj
def grants_list_command(obj: CommandContext, name: str, filename: str) -> None:
    """List the grants on every key protecting NAME."""
    values = FileStore(filename).get(name)
    output = list_grants(obj.clients, values, obj.deadline)
    if output:
        document = {
            alias: {grant: summary.to_document() for grant, summary in summaries.items()}
            for alias, summaries in output.items()
        }
        click.echo(dump_yaml(document), nl=False)


@grants.command("retire")
@click.argument("name")
@filename_option
@click.option("-g", "--grant-name", required=True, help="Name of the grant to retire")
@click.pass_obj
def grants_retire_command(obj: CommandContext, name: str, filename: str, grant_name: str) -> None:
    """Retire the grant GRANT_NAME on every key protecting NAME."""
    values = FileStore(filename).get(name)
    retired = retire_grants(obj.clients, values, grant_name, obj.deadline)
    click.echo(dump_yaml(retired), nl=False)
