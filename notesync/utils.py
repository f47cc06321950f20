"""Path and URL helpers shared by the storage, session and CLI layers."""

import logging
import os
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

LOCAL_HTTP_HOSTS = frozenset({"localhost", "127.0.0.1"})


def get_notesync_home() -> Path:
    """Directory holding the local database and credentials.

    ``NOTESYNC_HOME`` overrides the default ``~/.notesync``.
    """
    override = os.environ.get("NOTESYNC_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".notesync"


def validate_backend_url(url: Optional[str], *, allow_localhost_http: bool = True) -> Optional[str]:
    """Validate a backend URL before a bearer token is sent to it.

    Only https is accepted, except plain http to localhost when
    ``allow_localhost_http`` is set.

    Returns:
        The URL unchanged if valid, or ``None`` if rejected (a warning is
        logged with the reason).
    """
    if not url:
        return None

    parsed = urlparse(url)
    if parsed.scheme not in {"https", "http"}:
        logger.warning("Invalid backend_url scheme; only http/https allowed.")
        return None
    if not parsed.netloc:
        logger.warning("Invalid backend_url; missing host.")
        return None
    if parsed.scheme == "http":
        if not allow_localhost_http or (parsed.hostname or "") not in LOCAL_HTTP_HOSTS:
            logger.warning("Refusing non-local http backend_url for security.")
            return None
    return url
