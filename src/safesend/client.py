"""Transport and credential store factories for safesend.

Secrets come from the environment so they stay out of the repo; config.json
only carries tunables.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

from safesend.adapters.session_store import DirectoryCredentialStore


def build_transport(pairing_window: float = 120.0):
    """Create the Telethon transport from environment variables.

    We read API_ID/API_HASH via python-dotenv. The optional 2FA variable is
    used when the account has two-step verification enabled.
    """

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")

    # Fail fast on missing credentials to avoid an ambiguous login prompt.
    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")

    # Imported here so the core and the other commands work without Telethon.
    from safesend.adapters.telethon_transport import TelethonTransport

    logging.getLogger(__name__).info("Initializing Telegram transport")

    return TelethonTransport(
        int(api_id),
        api_hash,
        password=os.getenv("2FA"),
        pairing_window=pairing_window,
    )


def build_credential_store(default_directory: str) -> DirectoryCredentialStore:
    load_dotenv()
    return DirectoryCredentialStore(os.getenv("SESSION_DIR") or default_directory)
