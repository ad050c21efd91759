"""
Record store boundary - upsert/get over opaque JSON documents keyed by (user, phase, worksheet).
Stores never see plaintext for sensitive fields; encoding happens in the gateway.
"""

import asyncio
import copy
import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .db import get_db, init_db
from .errors import RecordNotFoundError, StoreError
from .schema import WorksheetRecord

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class IRecordStore(ABC):
    """Abstract interface for worksheet record storage."""

    @abstractmethod
    async def upsert(self, owner_id: str, group_key: int, record_key: str,
                     document: Dict[str, Any], completed: bool = False,
                     completed_at: Optional[datetime] = None) -> WorksheetRecord:
        """
        Create or fully replace the record for the composite key.

        A completed record is stamped with completed_at when given, otherwise now.
        """
        pass

    @abstractmethod
    async def get(self, owner_id: str, group_key: int, record_key: str) -> WorksheetRecord:
        """Get the record for the composite key. Raises RecordNotFoundError when absent."""
        pass

    @abstractmethod
    async def list_for_owner(self, owner_id: str, group_key: Optional[int] = None) -> List[WorksheetRecord]:
        """List records for a user, optionally limited to one phase, ordered by phase."""
        pass

    @abstractmethod
    async def mark_complete(self, owner_id: str, group_key: int, record_key: str) -> WorksheetRecord:
        """Flag an existing record completed. Raises RecordNotFoundError when absent."""
        pass

    @abstractmethod
    async def delete(self, owner_id: str, group_key: int, record_key: str) -> None:
        """Delete one record. Deleting a missing record is not an error."""
        pass

    @abstractmethod
    async def delete_group(self, owner_id: str, group_key: int) -> int:
        """Delete every record of a phase for a user. Returns the number deleted."""
        pass

    @abstractmethod
    async def delete_owner(self, owner_id: str) -> int:
        """Delete every record for a user. Returns the number deleted."""
        pass

    @abstractmethod
    async def list_owners(self) -> List[str]:
        """List every user id that owns at least one record."""
        pass


class InMemoryRecordStore(IRecordStore):
    """Dict-backed record store with the same upsert semantics as SQLiteRecordStore."""

    def __init__(self):
        self._records: Dict[Tuple[str, int, str], WorksheetRecord] = {}

    async def upsert(self, owner_id: str, group_key: int, record_key: str,
                     document: Dict[str, Any], completed: bool = False,
                     completed_at: Optional[datetime] = None) -> WorksheetRecord:
        now = _now()
        existing = self._records.get((owner_id, group_key, record_key))
        record = WorksheetRecord(
            owner_id=owner_id,
            group_key=group_key,
            record_key=record_key,
            document=copy.deepcopy(document),
            completed=completed,
            completed_at=(completed_at or now) if completed else None,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self._records[(owner_id, group_key, record_key)] = record
        return copy.deepcopy(record)

    async def get(self, owner_id: str, group_key: int, record_key: str) -> WorksheetRecord:
        record = self._records.get((owner_id, group_key, record_key))
        if record is None:
            raise RecordNotFoundError(owner_id, group_key, record_key)
        return copy.deepcopy(record)

    async def list_for_owner(self, owner_id: str, group_key: Optional[int] = None) -> List[WorksheetRecord]:
        records = [
            copy.deepcopy(r) for (owner, group, _), r in self._records.items()
            if owner == owner_id and (group_key is None or group == group_key)
        ]
        return sorted(records, key=lambda r: (r.group_key, r.record_key))

    async def mark_complete(self, owner_id: str, group_key: int, record_key: str) -> WorksheetRecord:
        record = self._records.get((owner_id, group_key, record_key))
        if record is None:
            raise RecordNotFoundError(owner_id, group_key, record_key)
        now = _now()
        record.completed = True
        record.completed_at = now
        record.updated_at = now
        return copy.deepcopy(record)

    async def delete(self, owner_id: str, group_key: int, record_key: str) -> None:
        self._records.pop((owner_id, group_key, record_key), None)

    async def delete_group(self, owner_id: str, group_key: int) -> int:
        doomed = [k for k in self._records if k[0] == owner_id and k[1] == group_key]
        for k in doomed:
            del self._records[k]
        return len(doomed)

    async def delete_owner(self, owner_id: str) -> int:
        doomed = [k for k in self._records if k[0] == owner_id]
        for k in doomed:
            del self._records[k]
        return len(doomed)

    async def list_owners(self) -> List[str]:
        return sorted({k[0] for k in self._records})


_COLUMNS = "user_id, phase_number, worksheet_id, data, completed, completed_at, created_at, updated_at"


def _row_to_record(row) -> WorksheetRecord:
    user_id, phase_number, worksheet_id, data, completed, completed_at, created_at, updated_at = row
    try:
        document = json.loads(data) if data else {}
    except json.JSONDecodeError as e:
        raise StoreError(f"Corrupt document for phase {phase_number} worksheet '{worksheet_id}': {e}") from e

    return WorksheetRecord(
        owner_id=user_id,
        group_key=phase_number,
        record_key=worksheet_id,
        document=document,
        completed=bool(completed),
        completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
        created_at=datetime.fromisoformat(created_at),
        updated_at=datetime.fromisoformat(updated_at),
    )


class SQLiteRecordStore(IRecordStore):
    """
    SQLite-backed record store using the worksheet_progress table.

    Each operation opens its own connection inside a worker thread via
    asyncio.to_thread, so the event loop keeps running timers and requests
    while the database is busy.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path
        init_db(db_path)

    def _fetch_one(self, cursor, owner_id: str, group_key: int, record_key: str) -> WorksheetRecord:
        cursor.execute(
            f"SELECT {_COLUMNS} FROM worksheet_progress WHERE user_id = ? AND phase_number = ? AND worksheet_id = ?",
            (owner_id, group_key, record_key)
        )
        row = cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(owner_id, group_key, record_key)
        return _row_to_record(row)

    async def upsert(self, owner_id: str, group_key: int, record_key: str,
                     document: Dict[str, Any], completed: bool = False,
                     completed_at: Optional[datetime] = None) -> WorksheetRecord:
        now = _now().isoformat()
        try:
            payload = json.dumps(document)
        except (TypeError, ValueError) as e:
            raise StoreError(f"Document is not JSON serializable: {e}") from e

        if completed:
            stamp = completed_at.isoformat() if completed_at else now
        else:
            stamp = None

        def _upsert():
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(
                    f"""
                    INSERT INTO worksheet_progress ({_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id, phase_number, worksheet_id) DO UPDATE SET
                        data = excluded.data,
                        completed = excluded.completed,
                        completed_at = excluded.completed_at,
                        updated_at = excluded.updated_at
                    """,
                    (owner_id, group_key, record_key, payload, completed, stamp, now, now)
                )
                conn.commit()
                return self._fetch_one(cursor, owner_id, group_key, record_key)

        try:
            return await asyncio.to_thread(_upsert)
        except sqlite3.Error as e:
            logger.error(f"Database error during upsert for phase {group_key} worksheet '{record_key}': {e}")
            raise StoreError(str(e)) from e

    async def get(self, owner_id: str, group_key: int, record_key: str) -> WorksheetRecord:
        def _get():
            with get_db(self.db_path) as conn:
                return self._fetch_one(conn.cursor(), owner_id, group_key, record_key)

        try:
            return await asyncio.to_thread(_get)
        except sqlite3.Error as e:
            logger.error(f"Database error during get for phase {group_key} worksheet '{record_key}': {e}")
            raise StoreError(str(e)) from e

    async def list_for_owner(self, owner_id: str, group_key: Optional[int] = None) -> List[WorksheetRecord]:
        query = f"SELECT {_COLUMNS} FROM worksheet_progress WHERE user_id = ?"
        params: Tuple[Any, ...] = (owner_id,)
        if group_key is not None:
            query += " AND phase_number = ?"
            params += (group_key,)
        query += " ORDER BY phase_number ASC, worksheet_id ASC"

        def _list():
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(query, params)
                return [_row_to_record(row) for row in cursor.fetchall()]

        try:
            return await asyncio.to_thread(_list)
        except sqlite3.Error as e:
            logger.error(f"Database error listing records: {e}")
            raise StoreError(str(e)) from e

    async def mark_complete(self, owner_id: str, group_key: int, record_key: str) -> WorksheetRecord:
        now = _now().isoformat()

        def _mark():
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "UPDATE worksheet_progress SET completed = ?, completed_at = ?, updated_at = ? "
                    "WHERE user_id = ? AND phase_number = ? AND worksheet_id = ?",
                    (True, now, now, owner_id, group_key, record_key)
                )
                if cursor.rowcount == 0:
                    raise RecordNotFoundError(owner_id, group_key, record_key)
                conn.commit()
                return self._fetch_one(cursor, owner_id, group_key, record_key)

        try:
            return await asyncio.to_thread(_mark)
        except sqlite3.Error as e:
            logger.error(f"Database error marking worksheet '{record_key}' complete: {e}")
            raise StoreError(str(e)) from e

    async def _execute_delete(self, where: str, params: Tuple[Any, ...]) -> int:
        def _delete_and_count():
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(f"DELETE FROM worksheet_progress WHERE {where}", params)
                conn.commit()
                return cursor.rowcount

        try:
            return await asyncio.to_thread(_delete_and_count)
        except sqlite3.Error as e:
            logger.error(f"Database error during delete: {e}")
            raise StoreError(str(e)) from e

    async def delete(self, owner_id: str, group_key: int, record_key: str) -> None:
        await self._execute_delete("user_id = ? AND phase_number = ? AND worksheet_id = ?",
                                   (owner_id, group_key, record_key))

    async def delete_group(self, owner_id: str, group_key: int) -> int:
        return await self._execute_delete("user_id = ? AND phase_number = ?", (owner_id, group_key))

    async def delete_owner(self, owner_id: str) -> int:
        return await self._execute_delete("user_id = ?", (owner_id,))

    async def list_owners(self) -> List[str]:
        def _owners():
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT DISTINCT user_id FROM worksheet_progress ORDER BY user_id")
                return [row[0] for row in cursor.fetchall()]

        try:
            return await asyncio.to_thread(_owners)
        except sqlite3.Error as e:
            logger.error(f"Database error listing owners: {e}")
            raise StoreError(str(e)) from e


def create_record_store(backend: Optional[str] = None) -> IRecordStore:
    """Get configured record store implementation."""
    from .config import STORE_BACKEND

    backend = backend or STORE_BACKEND
    if backend == "memory":
        return InMemoryRecordStore()
    return SQLiteRecordStore()
