"""Push: send a change set to the remote as one concurrent batch."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from notesync.errors import TransportError
from notesync.remote.operations import FOLDER_MUTATION, NOTE_MUTATION, USER_MUTATION
from notesync.remote.payloads import folder_variables, note_variables, user_variables
from notesync.types import ChangeSet, EntityKind, MutationOutcome, Record

logger = logging.getLogger(__name__)

_OPERATION_BY_KIND = {
    EntityKind.USER: USER_MUTATION,
    EntityKind.FOLDER: FOLDER_MUTATION,
    EntityKind.NOTE: NOTE_MUTATION,
}


class MutationDispatcher:
    """Executes one mutation per change-set entry.

    All writes start together (bounded by ``max_concurrency``) and the
    batch is awaited to full settlement. A failing write resolves to a
    failed ``MutationOutcome``; it never cancels another write and
    ``dispatch`` never raises.

    Transport failures are retried in place with exponential backoff
    (``retry_backoff_s * 2**n``) up to ``retries`` times. Rejected
    operations are not retried within the cycle.
    """

    def __init__(
        self,
        channel,
        owner_id: Optional[str],
        max_concurrency: int = 8,
        retries: int = 2,
        backoff_s: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.channel = channel
        self.owner_id = owner_id
        self.retries = retries
        self.backoff_s = backoff_s
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._sleep = sleep

    def variables_for(self, kind: EntityKind, record: Record) -> Dict[str, Any]:
        if kind == EntityKind.USER:
            return user_variables(record)
        if kind == EntityKind.FOLDER:
            return folder_variables(record, self.owner_id)
        return note_variables(record, self.owner_id)

    async def dispatch(self, changes: ChangeSet) -> List[MutationOutcome]:
        if changes.is_empty():
            return []
        logger.info(f"Dispatching {changes.total} mutations")
        outcomes = await asyncio.gather(
            *(self._send(kind, record) for kind, record in changes.entries())
        )
        failed = sum(1 for o in outcomes if not o.ok)
        if failed:
            logger.warning(f"{failed} of {len(outcomes)} mutations failed")
        else:
            logger.info(f"All {len(outcomes)} mutations confirmed")
        return list(outcomes)

    async def _send(self, kind: EntityKind, record: Record) -> MutationOutcome:
        operation = _OPERATION_BY_KIND[kind]
        attempt = 0
        while True:
            attempt += 1
            try:
                variables = self.variables_for(kind, record)
                async with self._semaphore:
                    await self.channel.execute(operation, variables)
                logger.debug(f"{kind.value} {record.id} pushed (attempt {attempt})")
                return MutationOutcome(kind, record.id, record.dt_modify, ok=True, attempts=attempt)
            except TransportError as e:
                if attempt <= self.retries:
                    delay = self.backoff_s * (2 ** (attempt - 1))
                    logger.warning(
                        f"{kind.value} {record.id} transport failure ({e}); retrying in {delay:.2f}s"
                    )
                    await self._sleep(delay)
                    continue
                return self._failed(kind, record, attempt, e)
            except Exception as e:
                return self._failed(kind, record, attempt, e)

    def _failed(self, kind: EntityKind, record: Record, attempts: int, error: Exception) -> MutationOutcome:
        logger.error(
            f"Failed to push {kind.value} {record.id} after {attempts} attempt(s): {error}",
            exc_info=error,
        )
        return MutationOutcome(
            kind,
            record.id,
            record.dt_modify,
            ok=False,
            attempts=attempts,
            error=f"{type(error).__name__}: {error}",
        )
