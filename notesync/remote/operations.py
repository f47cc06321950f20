"""GraphQL operation documents used by the sync engine.

Documents are embedded here and validated once at import time. Each
registered operation declares the exact set of variables it accepts, so
a payload builder that drifts from its document fails loudly on startup
instead of on the first request.
"""

import re
from dataclasses import dataclass
from typing import Dict, FrozenSet

from notesync.errors import ProtocolError

SYNC = "sync"
USER_MUTATION = "user"
FOLDER_MUTATION = "folder"
NOTE_MUTATION = "note"

_VARIABLE_DECL = re.compile(r"\$(\w+)\s*:")
_HEADER = re.compile(r"^\s*(query|mutation)\s+(\w+)")


@dataclass(frozen=True)
class Operation:
    name: str
    kind: str  # "query" or "mutation"
    operation_name: str  # GraphQL operationName sent with the request
    document: str
    variables: FrozenSet[str]


SYNC_QUERY = """
query Sync($userId: ID) {
  user(id: $userId) {
    folders {
      id
      title
      dtModify
      dtCreate
      isRoot
      isRemoved
      notes {
        id
        title
        content
        dtModify
        dtCreate
        isRemoved
      }
    }
  }
}
"""

USER_MUTATION_DOCUMENT = """
mutation User($id: ID!, $name: String, $photo: String, $email: String, $dtReg: Int, $dtModify: Int) {
  user(id: $id, name: $name, photo: $photo, email: $email, dtReg: $dtReg, dtModify: $dtModify) {
    id
  }
}
"""

FOLDER_MUTATION_DOCUMENT = """
mutation Folder($ownerId: ID!, $id: ID!, $title: String, $dtModify: Int, $dtCreate: Int, $isRemoved: Boolean, $isRoot: Boolean) {
  folder(ownerId: $ownerId, id: $id, title: $title, dtModify: $dtModify, dtCreate: $dtCreate, isRemoved: $isRemoved, isRoot: $isRoot) {
    id
  }
}
"""

NOTE_MUTATION_DOCUMENT = """
mutation Note($id: ID!, $authorId: ID!, $folderId: ID!, $title: String, $content: String, $dtModify: Int, $dtCreate: Int, $isRemoved: Boolean) {
  note(id: $id, authorId: $authorId, folderId: $folderId, title: $title, content: $content, dtModify: $dtModify, dtCreate: $dtCreate, isRemoved: $isRemoved) {
    id
  }
}
"""

_DEFINITIONS = (
    (SYNC, "query", SYNC_QUERY, {"userId"}),
    (
        USER_MUTATION,
        "mutation",
        USER_MUTATION_DOCUMENT,
        {"id", "name", "photo", "email", "dtReg", "dtModify"},
    ),
    (
        FOLDER_MUTATION,
        "mutation",
        FOLDER_MUTATION_DOCUMENT,
        {"ownerId", "id", "title", "dtModify", "dtCreate", "isRemoved", "isRoot"},
    ),
    (
        NOTE_MUTATION,
        "mutation",
        NOTE_MUTATION_DOCUMENT,
        {"id", "authorId", "folderId", "title", "content", "dtModify", "dtCreate", "isRemoved"},
    ),
)


def build_operation(name: str, kind: str, document: str, variables) -> Operation:
    """Parse and check one operation definition.

    Raises:
        ProtocolError: If the document header or its variable declarations
            don't match the expected kind and variable set.
    """
    header = _HEADER.match(document)
    if not header:
        raise ProtocolError(f"Operation {name!r} has no query/mutation header")
    if header.group(1) != kind:
        raise ProtocolError(f"Operation {name!r} is a {header.group(1)}, expected {kind}")
    declared = _VARIABLE_DECL.findall(document.split("{", 1)[0])
    if len(declared) != len(set(declared)):
        raise ProtocolError(f"Operation {name!r} declares a variable twice")
    if set(declared) != set(variables):
        missing = sorted(set(variables) - set(declared))
        extra = sorted(set(declared) - set(variables))
        raise ProtocolError(f"Operation {name!r} variables mismatch: missing={missing} extra={extra}")
    return Operation(
        name=name,
        kind=kind,
        operation_name=header.group(2),
        document=document.strip(),
        variables=frozenset(variables),
    )


def _build_registry() -> Dict[str, Operation]:
    registry: Dict[str, Operation] = {}
    for name, kind, document, variables in _DEFINITIONS:
        if name in registry:
            raise ProtocolError(f"Duplicate operation {name!r}")
        registry[name] = build_operation(name, kind, document, variables)
    return registry


OPERATIONS: Dict[str, Operation] = _build_registry()


def get_operation(name: str) -> Operation:
    try:
        return OPERATIONS[name]
    except KeyError:
        raise ProtocolError(f"Unknown operation: {name!r}") from None


def check_variables(operation: Operation, variables: Dict) -> None:
    """Reject variables the operation does not declare."""
    unknown = set(variables) - operation.variables
    if unknown:
        raise ProtocolError(f"Operation {operation.name!r} got undeclared variables: {sorted(unknown)}")
