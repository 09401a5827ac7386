"""Click options shared by several commands. Defaults come from Settings."""

from collections.abc import Callable
from typing import Any, TypeVar

import click

from config.settings import DEFAULT_REGIONS, get_settings

_F = TypeVar("_F", bound=Callable[..., Any])


def filename_option(func: _F) -> _F:
    return click.option(
        "-f",
        "--filename",
        default=lambda: get_settings().filename or None,
        required=True,
        type=click.Path(dir_okay=False),
        help="File storing the secrets (env: STRONGBOX_FILENAME)",
    )(func)


def region_priority_option(func: _F) -> _F:
    return click.option(
        "-p",
        "--region-priority",
        default=None,
        help="Comma-separated regions to try first (default: AWS_REGION)",
    )(func)


def label_option(func: _F) -> _F:
    return click.option(
        "-l",
        "--label",
        default=lambda: get_settings().label,
        show_default="default",
        help="Label of the key set (alias/strongbox-LABEL)",
    )(func)


def regions_option(func: _F) -> _F:
    return click.option(
        "-r",
        "--regions",
        default=lambda: get_settings().regions,
        show_default=DEFAULT_REGIONS,
        help="Comma-separated regions",
    )(func)


def algorithm_option(func: _F) -> _F:
    return click.option(
        "-a",
        "--algorithm",
        default=lambda: get_settings().algorithm,
        show_default="chacha20poly1305",
        help="Encryption algorithm (chacha20poly1305, aesgcm256, none)",
    )(func)
