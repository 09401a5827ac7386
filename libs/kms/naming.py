"""Names of the AWS resources strongbox manages."""

import re

from libs.secrets.exceptions import ValidationError

PROG_NAME = "strongbox"
ALIAS_PREFIX = f"alias/{PROG_NAME}-"
GRANT_PREFIX = f"{PROG_NAME}-"
DEFAULT_LABEL = "default"

LABEL_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


def validate_label(label: str) -> str:
    if not LABEL_PATTERN.match(label):
        raise ValidationError(
            f"Invalid label {label!r}: use letters, digits, '_' and '-' only"
        )
    return label


def alias_name(label: str) -> str:
    """KMS alias for label, e.g. alias/strongbox-default."""
    return ALIAS_PREFIX + validate_label(label)


def stack_name(label: str) -> str:
    """CloudFormation stack for label, e.g. strongbox-default."""
    return f"{PROG_NAME}-{validate_label(label)}"
