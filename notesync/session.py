"""Session credentials for the sync engine.

A ``Session`` is an explicit value handed to the coordinator; nothing in
the engine reads process-wide state.
"""

import json
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from notesync.config import SyncSettings, get_settings
from notesync.utils import get_notesync_home, validate_backend_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    """Current authenticated identity."""

    owner_id: Optional[str]
    token: Optional[str] = None
    backend_url: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def auth_headers(self) -> Dict[str, str]:
        """Bearer authorization headers for remote requests."""
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    def __repr__(self) -> str:
        token = "***" if self.token else None
        return f"Session(owner_id={self.owner_id!r}, token={token!r}, backend_url={self.backend_url!r})"


def _read_credentials_file() -> Dict[str, str]:
    credentials_path = get_notesync_home() / "credentials.json"
    if not credentials_path.exists():
        return {}
    try:
        with open(credentials_path) as f:
            creds = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.debug(f"Failed to load credentials file: {e}")
        return {}
    if not isinstance(creds, dict):
        return {}
    return {
        "backend_url": creds.get("backend_url"),
        # Accept "token" as an alias written by older clients
        "auth_token": creds.get("auth_token") or creds.get("token"),
        "user_id": creds.get("user_id"),
    }


def load_session(settings: Optional[SyncSettings] = None) -> Session:
    """Resolve the session from credentials and settings.

    Priority:
    1. ``NOTESYNC_*`` environment variables (via settings)
    2. ~/.notesync/credentials.json

    A backend URL that fails validation is dropped, which leaves the
    session unusable for remote calls rather than leaking the token.
    """
    settings = settings or get_settings()
    creds = _read_credentials_file()

    backend_url = settings.backend_url or creds.get("backend_url")
    auth_token = settings.auth_token or creds.get("auth_token")
    user_id = settings.user_id or creds.get("user_id")

    if backend_url:
        backend_url = validate_backend_url(backend_url)

    return Session(owner_id=user_id, token=auth_token, backend_url=backend_url)
