from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from auth.credentials import AccountCredentials

FILE_FORMAT_VERSION = 1


class CredentialStore(ABC):
    @abstractmethod
    async def load(self) -> AccountCredentials | None:
        raise NotImplementedError

    @abstractmethod
    async def save(self, credentials: AccountCredentials) -> None:
        raise NotImplementedError

    @abstractmethod
    async def clear(self) -> None:
        raise NotImplementedError


class MemoryCredentialStore(CredentialStore):
    def __init__(self, credentials: AccountCredentials | None = None) -> None:
        self._credentials = credentials

    async def load(self) -> AccountCredentials | None:
        return self._credentials

    async def save(self, credentials: AccountCredentials) -> None:
        self._credentials = credentials

    async def clear(self) -> None:
        self._credentials = None


class FileCredentialStore(CredentialStore):
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> AccountCredentials | None:
        if not self._path.exists():
            return None

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except ValueError as error:
            raise RuntimeError(f"Credential file is invalid; not JSON ({error}).") from error
        if not isinstance(raw, dict):
            raise RuntimeError("Credential file is invalid; expected top-level JSON object.")
        credentials = raw.get("credentials")
        if not isinstance(credentials, dict):
            raise RuntimeError("Credential file is invalid; missing credentials object.")
        try:
            return AccountCredentials.from_payload(credentials)
        except (KeyError, TypeError, ValueError) as error:
            raise RuntimeError(
                f"Credential file is invalid; unreadable entry ({error!r})."
            ) from error

    async def save(self, credentials: AccountCredentials) -> None:
        self._write(
            {
                "version": FILE_FORMAT_VERSION,
                "credentials": credentials.to_payload(),
            }
        )

    async def clear(self) -> None:
        self._path.unlink(missing_ok=True)

    def _write(self, payload: dict) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        # mkstemp creates the file owner-only (0600), which os.replace keeps.
        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
