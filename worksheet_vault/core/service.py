"""
Wires the persistence core together: store, cipher, codec, gateway, read cache, invalidation and auto-save.
"""

from typing import List, Optional

from .cache import ReadCache, phase_key, progress_key, worksheet_key
from .codec import DocumentCodec
from .crypto import AesGcmFieldCipher, IFieldCipher
from .dao import IRecordStore, create_record_store
from .gateway import PersistenceGateway
from .invalidation import InvalidationCoordinator
from .privacy import FieldClassifier
from .scheduler import AutoSaveRegistry
from .schema import PhaseSummary, RecordKey, WorksheetRecord


class WorksheetVault:
    """Facade over the persistence core used by the HTTP layer and scripts."""

    def __init__(self, store: IRecordStore, cipher: IFieldCipher,
                 classifier: Optional[FieldClassifier] = None,
                 cache: Optional[ReadCache] = None,
                 write_timeout: Optional[float] = None,
                 debounce_ms: Optional[int] = None,
                 autosave_enabled: Optional[bool] = None):
        self.store = store
        self.codec = DocumentCodec(cipher, classifier)
        self.gateway = PersistenceGateway(store, self.codec, write_timeout=write_timeout)
        self.cache = cache or ReadCache()
        self.invalidation = InvalidationCoordinator(self.cache).attach(self.gateway)
        self.autosave = AutoSaveRegistry(self.gateway, debounce_ms=debounce_ms, enabled=autosave_enabled)

    @classmethod
    def from_config(cls, store_backend: Optional[str] = None) -> "WorksheetVault":
        return cls(store=create_record_store(store_backend), cipher=AesGcmFieldCipher())

    async def get_worksheet(self, key: RecordKey) -> Optional[WorksheetRecord]:
        return await self.cache.get_or_fetch(
            worksheet_key(key.owner_id, key.group_key, key.record_key),
            lambda: self.gateway.read(key),
        )

    async def get_phase_summary(self, owner_id: str, group_key: int) -> PhaseSummary:
        return await self.cache.get_or_fetch(
            phase_key(owner_id, group_key),
            lambda: self.gateway.phase_summary(owner_id, group_key),
        )

    async def list_progress(self, owner_id: str) -> List[WorksheetRecord]:
        return await self.cache.get_or_fetch(
            progress_key(owner_id),
            lambda: self.gateway.list_all(owner_id),
        )

    def shutdown(self) -> None:
        self.autosave.dispose_all()
        self.cache.clear()
