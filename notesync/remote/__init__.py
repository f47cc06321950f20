"""Remote store access: operation registry, payload codecs and the channel."""

from .channel import RemoteChannel
from .operations import (
    FOLDER_MUTATION,
    NOTE_MUTATION,
    OPERATIONS,
    SYNC,
    USER_MUTATION,
    Operation,
    get_operation,
)
from .payloads import folder_variables, note_variables, parse_snapshot, user_variables

__all__ = [
    "RemoteChannel",
    "Operation",
    "OPERATIONS",
    "SYNC",
    "USER_MUTATION",
    "FOLDER_MUTATION",
    "NOTE_MUTATION",
    "get_operation",
    "parse_snapshot",
    "user_variables",
    "folder_variables",
    "note_variables",
]
