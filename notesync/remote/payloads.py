"""Conversion between records and GraphQL payloads.

Field contracts:
- user mutation:   id, name, photo, email, dtReg, dtModify
- folder mutation: ownerId, id, title (default ""), dtModify, dtCreate
                   (default null), isRemoved, isRoot
- note mutation:   id, authorId (= owner), folderId, title (default ""),
                   content, dtModify, dtCreate (default null), isRemoved

The pull payload never carries a note's folderId; callers attach it
from the enclosing folder.
"""

from typing import Any, Dict, List, Optional

from notesync.errors import ProtocolError
from notesync.types import Folder, Note, User


def user_variables(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "photo": user.photo,
        "email": user.email,
        "dtReg": user.dt_reg,
        "dtModify": user.dt_modify,
    }


def folder_variables(folder: Folder, owner_id: Optional[str]) -> Dict[str, Any]:
    return {
        "ownerId": owner_id,
        "id": folder.id,
        "title": folder.title or "",
        "dtModify": folder.dt_modify or None,
        "dtCreate": folder.dt_create or None,
        "isRemoved": folder.is_removed,
        "isRoot": folder.is_root,
    }


def note_variables(note: Note, owner_id: Optional[str]) -> Dict[str, Any]:
    return {
        "id": note.id,
        "authorId": owner_id,
        "folderId": note.folder_id,
        "title": note.title or "",
        "content": note.content,
        "dtModify": note.dt_modify or None,
        "dtCreate": note.dt_create or None,
        "isRemoved": note.is_removed,
    }


def _timestamp(value: Any, field_name: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ProtocolError(f"{field_name} must be a timestamp, got a boolean")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    raise ProtocolError(f"{field_name} must be a timestamp, got {value!r}")


def _identifier(item: Dict[str, Any], what: str) -> str:
    record_id = item.get("id")
    if not isinstance(record_id, str) or not record_id:
        raise ProtocolError(f"{what} without a string id: {item!r}")
    return record_id


def _as_list(value: Any, what: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ProtocolError(f"{what} must be a list, got {type(value).__name__}")
    return value


def note_from_payload(item: Any, folder_id: str) -> Note:
    if not isinstance(item, dict):
        raise ProtocolError(f"Note entry must be an object, got {type(item).__name__}")
    return Note(
        id=_identifier(item, "Note"),
        folder_id=folder_id,
        title=item.get("title") or "",
        content=item.get("content") or "",
        dt_create=_timestamp(item.get("dtCreate"), "dtCreate"),
        dt_modify=_timestamp(item.get("dtModify"), "dtModify"),
        is_removed=bool(item.get("isRemoved")),
    )


def folder_from_payload(item: Any) -> Folder:
    if not isinstance(item, dict):
        raise ProtocolError(f"Folder entry must be an object, got {type(item).__name__}")
    folder = Folder(
        id=_identifier(item, "Folder"),
        title=item.get("title") or "",
        dt_create=_timestamp(item.get("dtCreate"), "dtCreate"),
        dt_modify=_timestamp(item.get("dtModify"), "dtModify"),
        is_root=bool(item.get("isRoot")),
        is_removed=bool(item.get("isRemoved")),
    )
    folder.notes = [
        note_from_payload(note, folder.id) for note in _as_list(item.get("notes"), "folder.notes")
    ]
    return folder


def parse_snapshot(data: Any) -> List[Folder]:
    """Parse a sync query result into folders with their notes attached.

    ``{"user": null}`` (an owner the server doesn't know yet) is an empty tree.

    Raises:
        ProtocolError: If the payload doesn't have the expected shape.
    """
    if not isinstance(data, dict) or "user" not in data:
        raise ProtocolError("Sync response has no 'user' field")
    user = data["user"]
    if user is None:
        return []
    if not isinstance(user, dict):
        raise ProtocolError(f"Sync response 'user' must be an object, got {type(user).__name__}")
    return [folder_from_payload(item) for item in _as_list(user.get("folders"), "user.folders")]
