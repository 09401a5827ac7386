"""
YAML-file backed secret store.

The whole file is read at the start of each operation and written back in
full. Writes go to a temporary file in the same directory which then
replaces the original with os.replace(), so a crash mid-write never leaves
a truncated file. Concurrent writers from separate processes are not
coordinated: the last writer wins.

Document format:

    db_password:
    - key_id: arn:aws:kms:us-east-1:123456789012:alias/strongbox-default
      key_manager: kms
      algorithm: chacha20poly1305
      key_ciphertext: AQIDAHh...
      ciphertext: 8y1Cq...
    $KEY_TEMPLATE$:
    - key_id: arn:aws:kms:us-east-1:123456789012:alias/strongbox-default
      key_manager: kms
      algorithm: chacha20poly1305

A missing file is an empty store. Reading never creates it.
"""

import logging
import os
import tempfile
import threading
from collections.abc import Mapping
from pathlib import Path

import pydantic
import yaml

from libs.secrets.exceptions import NameNotFoundError, StoreFormatError, StoreIOError
from libs.secrets.models import KEY_TEMPLATE_NAME, Key, Value

logger = logging.getLogger(__name__)

NO_TEMPLATE_HINT = "Create the file with `strongbox kms init` or specify --key-id."


class FileStore:
    """
    Secret store persisted as one YAML document.

    Thread Safety:
        Read-modify-write cycles within one process are serialized by a lock.

    Example:
        >>> store = FileStore("secrets.yml")
        >>> store.put("db_password", values)
        >>> store.get("db_password") == values
        True
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, name: str) -> list[Value]:
        """
        Return the values stored under name.

        Raises:
            NameNotFoundError: name is not present
            StoreIOError, StoreFormatError: file unreadable or malformed
        """
        data = self._load()
        if name not in data:
            raise NameNotFoundError(name)
        return data[name]

    def get_all(self) -> dict[str, list[Value]]:
        """Full mapping, including the key template entry if present."""
        return self._load()

    def secret_names(self) -> list[str]:
        """Sorted user secret names (the key template is excluded)."""
        return sorted(name for name in self._load() if name != KEY_TEMPLATE_NAME)

    def put(self, name: str, values: list[Value]) -> None:
        """
        Replace the values stored under name and persist atomically.

        Raises:
            StoreIOError: write failed; the previous file is left untouched
        """
        self.put_many({name: values})

    def put_many(self, entries: Mapping[str, list[Value]]) -> None:
        """
        Replace the values of every name in entries with one atomic write.

        Either all entries are persisted or none are.

        Raises:
            StoreIOError: write failed; the previous file is left untouched
        """
        with self._lock:
            data = self._load()
            for name, values in entries.items():
                data[name] = list(values)
            self._write(data)
        for name, values in entries.items():
            logger.info(
                "Stored values",
                extra={
                    "context": {"secret_name": name, "count": len(values), "file": str(self._path)}
                },
            )

    def delete(self, name: str) -> None:
        """
        Remove name from the store.

        Raises:
            NameNotFoundError: name is not present
        """
        with self._lock:
            data = self._load()
            if name not in data:
                raise NameNotFoundError(name)
            del data[name]
            self._write(data)

    def get_key_ids(self) -> list[Key]:
        """
        Keys recorded in the key template.

        Raises:
            NameNotFoundError: no template has been written yet
        """
        data = self._load()
        if KEY_TEMPLATE_NAME not in data:
            raise NameNotFoundError(KEY_TEMPLATE_NAME, hint=NO_TEMPLATE_HINT)
        return [value.key for value in data[KEY_TEMPLATE_NAME]]

    def _load(self) -> dict[str, list[Value]]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StoreIOError(str(self._path), e.strerror or str(e)) from e

        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise StoreFormatError(str(self._path), f"invalid YAML: {e}") from e

        if document is None:
            return {}
        if not isinstance(document, dict):
            raise StoreFormatError(str(self._path), "top level must be a mapping of names")

        data: dict[str, list[Value]] = {}
        for name, entries in document.items():
            if not isinstance(name, str):
                raise StoreFormatError(str(self._path), f"name {name!r} is not a string")
            if not isinstance(entries, list):
                raise StoreFormatError(str(self._path), f"'{name}' must hold a list of values")
            try:
                data[name] = [Value.model_validate(entry) for entry in entries]
            except pydantic.ValidationError as e:
                raise StoreFormatError(
                    str(self._path), f"invalid value under '{name}': {e}"
                ) from e
        return data

    def _write(self, data: dict[str, list[Value]]) -> None:
        document = {
            name: [value.to_document() for value in data[name]] for name in sorted(data)
        }
        payload = yaml.safe_dump(document, default_flow_style=False, sort_keys=False)

        directory = self._path.parent
        tmp_name: str | None = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=directory,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            mode = self._path.stat().st_mode & 0o777 if self._path.exists() else 0o644
            os.chmod(tmp_name, mode)
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as e:
            raise StoreIOError(str(self._path), e.strerror or str(e)) from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
