"""
Audit router for submitting website health audits and reading their results.
"""

import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, get_auth_context, get_optional_auth_context
from routers.rate_limit import rate_limit
from services.audit import (
    delete_audit_job,
    get_audit_history,
    get_audit_job,
    list_audit_jobs,
    list_public_audits,
    submit_audit,
    submit_batch,
)
from services.errors import (
    AuditError,
    AuthorizationError,
    DispatchUnavailableError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class CreateAuditRequest(BaseModel):
    url: str = Field(max_length=2048)
    device_type: Optional[str] = None
    location: Optional[str] = Field(default=None, max_length=32)
    is_public: bool = False
    tags: List[str] = Field(default_factory=list)
    notes: Optional[str] = Field(default=None, max_length=1000)


class AnonymousAuditRequest(BaseModel):
    url: str = Field(max_length=2048)
    device_type: Optional[str] = None
    location: Optional[str] = Field(default=None, max_length=32)


class BatchAuditRequest(BaseModel):
    urls: List[str] = Field(default_factory=list)
    device_type: Optional[str] = None
    location: Optional[str] = Field(default=None, max_length=32)


def _raise_http(exc: AuditError) -> None:
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if isinstance(exc, QuotaExceededError):
        raise HTTPException(status_code=429, detail=str(exc)) from exc
    if isinstance(exc, AuthorizationError):
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, DispatchUnavailableError):
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    logger.error("Unhandled audit error: %s", exc)
    raise HTTPException(status_code=500, detail="Audit request failed") from exc


@router.post("", status_code=201)
async def create_audit(
    request: CreateAuditRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Start an audit owned by the authenticated user."""
    try:
        audit = await submit_audit(
            db,
            url=request.url,
            device_type=request.device_type,
            location=request.location,
            is_public=request.is_public,
            tags=request.tags,
            notes=request.notes,
            owner_id=auth.user_id,
        )
    except AuditError as exc:
        _raise_http(exc)
    return {"message": "Audit started successfully", "audit": audit}


@router.post("/anonymous", status_code=201)
async def create_anonymous_audit(
    request: AnonymousAuditRequest,
    _rate_limit: None = Depends(
        rate_limit(
            "audit_anonymous",
            limit=settings.ANONYMOUS_AUDIT_RATE_LIMIT,
            window_seconds=settings.ANONYMOUS_AUDIT_RATE_WINDOW_SECONDS,
        )
    ),
    db: AsyncSession = Depends(get_db),
):
    """Start a public audit without an account."""
    try:
        audit = await submit_audit(
            db,
            url=request.url,
            device_type=request.device_type,
            location=request.location,
        )
    except AuditError as exc:
        _raise_http(exc)
    return {"message": "Audit started successfully", "audit": audit}


@router.post("/batch", status_code=201)
async def create_batch_audit(
    request: BatchAuditRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Start one independent audit per URL (paid tiers)."""
    try:
        audits = await submit_batch(
            db,
            urls=request.urls,
            owner_id=auth.user_id,
            device_type=request.device_type,
            location=request.location,
        )
    except AuditError as exc:
        _raise_http(exc)
    return {
        "message": f"Batch audit started for {len(audits)} URLs",
        "audits": audits,
    }


@router.get("")
async def list_audits(
    status: Optional[str] = Query(default=None),
    device_type: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    sort_order: Literal["asc", "desc"] = Query(default="desc"),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's audits, newest first."""
    try:
        return await list_audit_jobs(
            db,
            owner_id=auth.user_id,
            status=status,
            device_type=device_type,
            search=search,
            page=page,
            limit=limit,
            sort_order=sort_order,
        )
    except AuditError as exc:
        _raise_http(exc)


@router.get("/public")
async def list_public(
    search: Optional[str] = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """List audits that anyone may read."""
    return await list_public_audits(db, search=search, page=page, limit=limit)


@router.get("/history")
async def audit_history(
    period: str = Query(default="30d"),
    group_by: str = Query(default="day"),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Completed-audit trend for the caller."""
    try:
        history = await get_audit_history(db, owner_id=auth.user_id, period=period, group_by=group_by)
    except AuditError as exc:
        _raise_http(exc)
    return {"period": period, "group_by": group_by, "history": history}


@router.get("/{audit_id}")
async def get_audit(
    audit_id: str,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Poll one audit. Owners see private audits; anyone sees public ones."""
    try:
        return await get_audit_job(db, audit_id, auth.user_id if auth else None)
    except AuditError as exc:
        _raise_http(exc)


@router.delete("/{audit_id}")
async def delete_audit(
    audit_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        await delete_audit_job(db, audit_id, auth.user_id)
    except AuditError as exc:
        _raise_http(exc)
    return {"message": "Audit deleted successfully"}
