"""Static configuration for safesend.

All user-editable settings (messaging limits, logging) live in a single
JSON file for quick edits without touching Python.
"""

import json
import logging
import os

from safesend.core.config import MessagingConfig

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))

CONFIG_PATH = os.environ.get("SAFESEND_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def build_messaging_config(raw: dict) -> MessagingConfig:
    """Build the core config from the "messaging" section.

    Unknown keys are ignored with a warning so an old config file keeps working.
    """

    known = MessagingConfig.field_names()
    unknown = sorted(set(raw) - known)
    if unknown:
        logging.getLogger(__name__).warning("Ignoring unknown messaging settings: %s", ", ".join(unknown))
    return MessagingConfig(**{key: value for key, value in raw.items() if key in known})


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Limits for the outbound messaging layer; anything omitted uses the defaults.
MESSAGING = build_messaging_config(_CONFIG.get("messaging", {}))

# Where the transport session blob is kept. SESSION_DIR in the environment wins.
_session = _CONFIG.get("session", {})
SESSION_DIR = _session.get("directory", "session")
if not os.path.isabs(SESSION_DIR):
    SESSION_DIR = os.path.join(PROJECT_ROOT, SESSION_DIR)

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
