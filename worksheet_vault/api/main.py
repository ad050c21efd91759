"""
HTTP API over the worksheet persistence core.
The authenticated user id is supplied by the fronting auth layer in the X-User-Id header.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Depends, Header, Path
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional
import logging

from .schemas import (
    WorksheetSaveRequest,
    WorksheetFlushRequest,
    WorksheetResponse,
    WorksheetListResponse,
    PhaseProgressResponse,
    SaveStatusResponse,
    ResetResponse,
    HealthResponse,
)
from ..core.config import VERSION, debug_enabled, validate_config
from ..core.dao import SQLiteRecordStore
from ..core.db import health_check
from ..core.errors import GatewayTimeoutError, RecordNotFoundError, WorksheetVaultError
from ..core.schema import RecordKey, WorksheetRecord
from ..core.service import WorksheetVault

logger = logging.getLogger(__name__)

_vault: Optional[WorksheetVault] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if _vault is not None:
        _vault.shutdown()


app = FastAPI(
    title="Worksheet Vault API",
    version=VERSION,
    description="Encrypted, debounced persistence for journal and worksheet content",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_vault() -> WorksheetVault:
    """Get the process-wide vault, built from configuration on first use."""
    global _vault
    if _vault is None:
        _vault = WorksheetVault.from_config()
    return _vault


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def _record_key(user_id: str, phase_number: int, worksheet_id: str) -> RecordKey:
    try:
        return RecordKey(user_id, phase_number, worksheet_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _to_response(record: WorksheetRecord) -> WorksheetResponse:
    return WorksheetResponse(
        phase_number=record.group_key,
        worksheet_id=record.record_key,
        data=record.document,
        completed=record.completed,
        completed_at=record.completed_at,
        created_at=record.created_at,
        updated_at=record.updated_at,
        progress=record.progress,
        optimistic=record.optimistic,
    )


def _gateway_error(e: Exception) -> HTTPException:
    if isinstance(e, GatewayTimeoutError):
        return HTTPException(status_code=504, detail=str(e))
    logger.error(f"Store operation failed: {type(e).__name__}: {e}")
    return HTTPException(status_code=502, detail=f"Store operation failed: {type(e).__name__}")


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(vault: WorksheetVault = Depends(get_vault)):
    """Check system health."""
    if isinstance(vault.store, SQLiteRecordStore):
        db_health = health_check(vault.store.db_path)
    else:
        db_health = True

    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        config_issues=validate_config(),
    )


@app.get("/worksheets", response_model=WorksheetListResponse)
async def list_worksheets(user_id: str = Depends(get_user_id), vault: WorksheetVault = Depends(get_vault)):
    """All worksheet progress for the user."""
    try:
        records = await vault.list_progress(user_id)
    except WorksheetVaultError as e:
        raise _gateway_error(e)
    return WorksheetListResponse(worksheets=[_to_response(r) for r in records])


@app.delete("/worksheets", response_model=ResetResponse)
async def reset_all_worksheets(user_id: str = Depends(get_user_id), vault: WorksheetVault = Depends(get_vault)):
    """Delete every worksheet for the user."""
    vault.autosave.dispose_owner(user_id)
    try:
        deleted = await vault.gateway.reset_all(user_id)
    except WorksheetVaultError as e:
        raise _gateway_error(e)
    return ResetResponse(deleted=deleted)


@app.get("/phases/{phase_number}/progress", response_model=PhaseProgressResponse)
async def get_phase_progress(phase_number: int = Path(..., ge=1),
                             user_id: str = Depends(get_user_id),
                             vault: WorksheetVault = Depends(get_vault)):
    """Completion summary for one phase."""
    try:
        summary = await vault.get_phase_summary(user_id, phase_number)
    except WorksheetVaultError as e:
        raise _gateway_error(e)

    return PhaseProgressResponse(
        phase_number=summary.phase_number,
        completed=summary.completed,
        total=summary.total,
        percentage=summary.percentage,
        worksheets=[_to_response(w) for w in summary.worksheets],
    )


@app.delete("/phases/{phase_number}", response_model=ResetResponse)
async def reset_phase(phase_number: int = Path(..., ge=1),
                      user_id: str = Depends(get_user_id),
                      vault: WorksheetVault = Depends(get_vault)):
    """Delete every worksheet in one phase for the user."""
    vault.autosave.dispose_owner(user_id, phase_number)
    try:
        deleted = await vault.gateway.reset_phase(user_id, phase_number)
    except WorksheetVaultError as e:
        raise _gateway_error(e)
    return ResetResponse(deleted=deleted)


@app.get("/worksheets/{phase_number}/{worksheet_id}", response_model=WorksheetResponse)
async def get_worksheet(phase_number: int = Path(..., ge=1),
                        worksheet_id: str = Path(...),
                        user_id: str = Depends(get_user_id),
                        vault: WorksheetVault = Depends(get_vault)):
    """Get one worksheet with sensitive fields decrypted."""
    key = _record_key(user_id, phase_number, worksheet_id)
    try:
        record = await vault.get_worksheet(key)
    except WorksheetVaultError as e:
        raise _gateway_error(e)

    if record is None:
        raise HTTPException(status_code=404, detail=f"No progress for worksheet '{worksheet_id}'")
    return _to_response(record)


@app.put("/worksheets/{phase_number}/{worksheet_id}", response_model=SaveStatusResponse, status_code=202)
async def autosave_worksheet(req: WorksheetSaveRequest,
                             phase_number: int = Path(..., ge=1),
                             worksheet_id: str = Path(...),
                             user_id: str = Depends(get_user_id),
                             vault: WorksheetVault = Depends(get_vault)):
    """Feed an edited document to the worksheet's auto-save; the write happens after the quiet period."""
    key = _record_key(user_id, phase_number, worksheet_id)
    try:
        scheduler = await vault.autosave.open(key)
    except WorksheetVaultError as e:
        raise _gateway_error(e)

    scheduler.schedule_save(req.data)
    return SaveStatusResponse(phase_number=phase_number, worksheet_id=worksheet_id, **scheduler.status())


@app.post("/worksheets/{phase_number}/{worksheet_id}/save", response_model=WorksheetResponse)
async def save_worksheet_now(req: Optional[WorksheetFlushRequest] = None,
                             phase_number: int = Path(..., ge=1),
                             worksheet_id: str = Path(...),
                             user_id: str = Depends(get_user_id),
                             vault: WorksheetVault = Depends(get_vault)):
    """Write immediately, bypassing the quiet period ("save and leave", "save and complete")."""
    req = req or WorksheetFlushRequest()
    key = _record_key(user_id, phase_number, worksheet_id)
    try:
        scheduler = await vault.autosave.open(key)
        record = await scheduler.flush_now(completed=req.completed, document=req.data)
    except WorksheetVaultError as e:
        raise _gateway_error(e)
    return _to_response(record)


@app.post("/worksheets/{phase_number}/{worksheet_id}/complete", response_model=WorksheetResponse)
async def complete_worksheet(phase_number: int = Path(..., ge=1),
                             worksheet_id: str = Path(...),
                             user_id: str = Depends(get_user_id),
                             vault: WorksheetVault = Depends(get_vault)):
    """Mark an existing worksheet completed."""
    key = _record_key(user_id, phase_number, worksheet_id)
    try:
        record = await vault.gateway.mark_complete(key)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail=f"No progress for worksheet '{worksheet_id}'")
    except WorksheetVaultError as e:
        raise _gateway_error(e)
    return _to_response(record)


@app.get("/worksheets/{phase_number}/{worksheet_id}/status", response_model=SaveStatusResponse)
def get_save_status(phase_number: int = Path(..., ge=1),
                    worksheet_id: str = Path(...),
                    user_id: str = Depends(get_user_id),
                    vault: WorksheetVault = Depends(get_vault)):
    """Auto-save status for the "saving... / saved at / retry" indicator."""
    key = _record_key(user_id, phase_number, worksheet_id)
    scheduler = vault.autosave.get(key)
    if scheduler is None:
        return SaveStatusResponse(phase_number=phase_number, worksheet_id=worksheet_id,
                                  is_saving=False, is_pending=False, is_error=False)
    return SaveStatusResponse(phase_number=phase_number, worksheet_id=worksheet_id, **scheduler.status())


@app.delete("/worksheets/{phase_number}/{worksheet_id}", status_code=204)
async def delete_worksheet(phase_number: int = Path(..., ge=1),
                           worksheet_id: str = Path(...),
                           user_id: str = Depends(get_user_id),
                           vault: WorksheetVault = Depends(get_vault)):
    """Delete one worksheet's progress."""
    key = _record_key(user_id, phase_number, worksheet_id)
    vault.autosave.dispose(key)
    try:
        await vault.gateway.delete(key)
    except WorksheetVaultError as e:
        raise _gateway_error(e)
