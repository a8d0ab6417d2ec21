"""Directory-backed credential store.

Implements the core CredentialStorePort by keeping the transport session
string in a private directory.
"""

from __future__ import annotations

import logging
import os
import shutil
from typing import Optional

LOGGER = logging.getLogger(__name__)

SESSION_FILE = "session.txt"


class DirectoryCredentialStore:
    """Thin file wrapper that satisfies the CredentialStorePort contract."""

    def __init__(self, directory: str) -> None:
        self._directory = directory
        self._path = os.path.join(directory, SESSION_FILE)

    @property
    def directory(self) -> str:
        return self._directory

    def load(self) -> Optional[str]:
        """Return the stored session blob, if any."""

        if not os.path.exists(self._path):
            return None
        with open(self._path, "r", encoding="utf-8") as handle:
            blob = handle.read().strip()
        return blob or None

    def save(self, blob: str) -> None:
        """Write the session blob with owner-only permissions."""

        os.makedirs(self._directory, mode=0o700, exist_ok=True)
        tmp_path = f"{self._path}.tmp"
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(blob)
        os.replace(tmp_path, self._path)

    def clear(self) -> None:
        """Remove the whole credential directory."""

        if os.path.isdir(self._directory):
            shutil.rmtree(self._directory)
            LOGGER.info("Cleared stored credentials")
