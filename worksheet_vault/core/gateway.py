"""
Persistence gateway - encode then write, read then decode, for one worksheet record at a time.
Callers never pre-encode documents and never observe ciphertext in sensitive fields.
"""

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from util.logging import logger

from .codec import DocumentCodec
from .config import WRITE_TIMEOUT_POLICY, get_phase_worksheet_total, get_write_timeout
from .dao import IRecordStore
from .errors import GatewayTimeoutError, RecordNotFoundError
from .schema import PhaseSummary, RecordKey, WorksheetRecord

PostWriteHook = Callable[[RecordKey], None]
PostResetHook = Callable[[str, Optional[int]], None]


class TimeoutPolicy(str, Enum):
    """What write() reports when the store does not answer within the timeout."""
    OPTIMISTIC = "optimistic"  # synthesize success from the input, log the timeout
    PROPAGATE = "propagate"    # raise GatewayTimeoutError


class PersistenceGateway:
    """
    Orchestrates the codec and the record store for single worksheet records.

    Successful writes (including optimistic ones) run the registered post-write
    hooks, which is where cache invalidation is attached.
    """

    def __init__(self, store: IRecordStore, codec: DocumentCodec,
                 write_timeout: Optional[float] = None,
                 timeout_policy: Optional[TimeoutPolicy] = None):
        self.store = store
        self.codec = codec
        self.write_timeout = get_write_timeout() if write_timeout is None else write_timeout
        self.timeout_policy = TimeoutPolicy(timeout_policy or WRITE_TIMEOUT_POLICY)
        self._post_write_hooks: List[PostWriteHook] = []
        self._post_reset_hooks: List[PostResetHook] = []

    def add_post_write_hook(self, hook: PostWriteHook) -> None:
        if not callable(hook):
            raise ValueError(f"Post-write hook must be callable: {hook}")
        self._post_write_hooks.append(hook)

    def add_post_reset_hook(self, hook: PostResetHook) -> None:
        if not callable(hook):
            raise ValueError(f"Post-reset hook must be callable: {hook}")
        self._post_reset_hooks.append(hook)

    async def write(self, key: RecordKey, document: Dict[str, Any], completed: bool = False,
                    completed_at: Optional[datetime] = None) -> WorksheetRecord:
        """
        Encode and upsert a worksheet document.

        Args:
            key: Composite record key
            document: Plaintext document (full replacement)
            completed: Completion flag to store with the document
            completed_at: Completion time to keep on a completed record; defaults to now

        Returns:
            WorksheetRecord carrying the caller's plaintext document. After a
            timeout under the optimistic policy the record is synthesized
            locally and flagged optimistic.

        Raises:
            GatewayTimeoutError: on timeout under the propagate policy
            Any store error other than a timeout, unchanged
        """
        document = document or {}
        encoded = await self.codec.encode(document)

        upsert = asyncio.ensure_future(
            self.store.upsert(key.owner_id, key.group_key, key.record_key, encoded, completed, completed_at)
        )
        try:
            # Shielded so a slow store call keeps running after the timeout fires
            stored = await asyncio.wait_for(asyncio.shield(upsert), timeout=self.write_timeout)
        except asyncio.TimeoutError:
            upsert.add_done_callback(lambda task: self._on_late_write(key, task))
            logger.log_gateway_timeout(key.owner_id, key.group_key, key.record_key,
                                       self.write_timeout, self.timeout_policy.value)
            if self.timeout_policy == TimeoutPolicy.PROPAGATE:
                raise GatewayTimeoutError(self.write_timeout)
            record = self._optimistic_record(key, document, completed, completed_at)
        except Exception as e:
            logger.log_save_operation(key.owner_id, key.group_key, key.record_key, "failed",
                                      {"error_type": type(e).__name__})
            raise
        else:
            record = stored.with_document(document)
            logger.log_save_operation(key.owner_id, key.group_key, key.record_key, "success",
                                      {"completed": completed})

        self._run_post_write_hooks(key)
        return record

    async def read(self, key: RecordKey) -> Optional[WorksheetRecord]:
        """Get and decode a worksheet record; None when it does not exist."""
        try:
            stored = await self.store.get(key.owner_id, key.group_key, key.record_key)
        except RecordNotFoundError:
            return None

        return stored.with_document(await self.codec.decode(stored.document))

    async def list_all(self, owner_id: str) -> List[WorksheetRecord]:
        """All decoded records for a user, ordered by phase."""
        records = await self.store.list_for_owner(owner_id)
        return [r.with_document(await self.codec.decode(r.document)) for r in records]

    async def phase_summary(self, owner_id: str, group_key: int) -> PhaseSummary:
        """Completion summary for one phase."""
        records = await self.store.list_for_owner(owner_id, group_key)
        worksheets = [r.with_document(await self.codec.decode(r.document)) for r in records]
        return PhaseSummary(
            phase_number=group_key,
            completed=sum(1 for w in worksheets if w.completed),
            total=get_phase_worksheet_total(group_key),
            worksheets=worksheets,
        )

    async def mark_complete(self, key: RecordKey) -> WorksheetRecord:
        """Flag an existing record completed without rewriting its document."""
        stored = await self.store.mark_complete(key.owner_id, key.group_key, key.record_key)
        self._run_post_write_hooks(key)
        return stored.with_document(await self.codec.decode(stored.document))

    async def delete(self, key: RecordKey) -> None:
        await self.store.delete(key.owner_id, key.group_key, key.record_key)
        self._run_post_write_hooks(key)

    async def reset_phase(self, owner_id: str, group_key: int) -> int:
        deleted = await self.store.delete_group(owner_id, group_key)
        self._run_post_reset_hooks(owner_id, group_key)
        return deleted

    async def reset_all(self, owner_id: str) -> int:
        deleted = await self.store.delete_owner(owner_id)
        self._run_post_reset_hooks(owner_id, None)
        return deleted

    def _optimistic_record(self, key: RecordKey, document: Dict[str, Any], completed: bool,
                           completed_at: Optional[datetime] = None) -> WorksheetRecord:
        now = datetime.now(timezone.utc)
        return WorksheetRecord(
            owner_id=key.owner_id,
            group_key=key.group_key,
            record_key=key.record_key,
            document=document,
            completed=completed,
            completed_at=(completed_at or now) if completed else None,
            created_at=now,
            updated_at=now,
            optimistic=True,
        )

    def _on_late_write(self, key: RecordKey, task: "asyncio.Future") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.log_save_operation(key.owner_id, key.group_key, key.record_key, "failed",
                                      {"late": True, "error_type": type(error).__name__})
        else:
            logger.log_save_operation(key.owner_id, key.group_key, key.record_key, "success", {"late": True})
            self._run_post_write_hooks(key)

    def _run_post_write_hooks(self, key: RecordKey) -> None:
        for hook in self._post_write_hooks:
            try:
                hook(key)
            except Exception as e:
                # A failing hook never turns a landed write into an error
                logger.warning(f"Post-write hook {hook!r} failed for worksheet '{key.record_key}': {e}")

    def _run_post_reset_hooks(self, owner_id: str, group_key: Optional[int]) -> None:
        for hook in self._post_reset_hooks:
            try:
                hook(owner_id, group_key)
            except Exception as e:
                logger.warning(f"Post-reset hook {hook!r} failed: {e}")
