"""Interactive editing through the user's $VISUAL / $EDITOR."""

import logging
import os
import shlex
import subprocess
import tempfile
from collections.abc import Mapping

from libs.kms.exceptions import EditorNotConfiguredError, EmptyEditResultError, UnchangedEditError
from libs.secrets.exceptions import ValidationError

logger = logging.getLogger(__name__)


class ExternalEditor:
    """
    Opens text in an external editor and returns the edited result.

    The editor command comes from VISUAL, then EDITOR, and may carry
    arguments (e.g. "code --wait").

    Example:
        >>> ExternalEditor().edit('{"Version": "2012-10-17"}', suffix=".json")
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    def command(self) -> list[str]:
        for variable in ("VISUAL", "EDITOR"):
            value = self._environ.get(variable, "").strip()
            if value:
                return shlex.split(value)
        raise EditorNotConfiguredError()

    def edit(self, text: str, suffix: str = ".txt") -> str:
        """
        Let the user edit text and return the trimmed result.

        Raises:
            EditorNotConfiguredError: neither VISUAL nor EDITOR is set
            EmptyEditResultError: the result is empty
            UnchangedEditError: the result equals the (trimmed) input
            ValidationError: the editor exited with a failure status
        """
        command = self.command()
        fd, path = tempfile.mkstemp(prefix="strongbox-", suffix=suffix)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)

            logger.debug("Launching editor", extra={"context": {"command": command[0]}})
            try:
                subprocess.run([*command, path], check=True)
            except (OSError, subprocess.CalledProcessError) as e:
                raise ValidationError(f"Editor {command[0]} failed: {e}") from e

            with open(path, encoding="utf-8") as handle:
                edited = handle.read().strip()
        finally:
            os.unlink(path)

        if not edited:
            raise EmptyEditResultError()
        if edited == text.strip():
            raise UnchangedEditError()
        return edited
