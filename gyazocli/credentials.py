# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Stored credentials for gyazocli.
Keeps the access token in ~/.config/gyazo/credentials.json.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from .config import GyazoConfig

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIALS_PATH = os.path.expanduser("~/.config/gyazo/credentials.json")

TOKEN_KEY = "GYAZO_ACCESS_TOKEN"


def _load_stored(path: str) -> dict:
    """Load the credentials file, returning {} if it is missing or unreadable."""
    if not os.path.exists(path):
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable credentials file {path}: {e}")
        return {}


def get_stored_token(path: str = DEFAULT_CREDENTIALS_PATH) -> Optional[str]:
    """Return the stored access token, if any."""
    return _load_stored(path).get(TOKEN_KEY) or None


def set_stored_token(token: str, path: str = DEFAULT_CREDENTIALS_PATH) -> None:
    """Persist the access token, keeping any other stored keys."""
    stored = _load_stored(path)
    stored[TOKEN_KEY] = token

    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(stored, f, indent=2)
    logger.info(f"Saved access token to {path}")


def resolve_access_token(
    config: GyazoConfig,
    path: str = DEFAULT_CREDENTIALS_PATH
) -> Optional[str]:
    """
    Resolve the token to use for API calls.

    The configured (or environment) token wins over the stored one. The
    resolved token is written back into ``config.api`` so the client sees it.
    """
    if config.api.access_token:
        return config.api.access_token

    token = get_stored_token(path)
    if token:
        config.api.access_token = token
    return token


def mask_token(token: str) -> str:
    """Mask a token for display."""
    if len(token) > 8:
        return f"{token[:4]}...{token[-4:]}"
    return "********"
