"""
HTTP routes for authentication, PDF conversion and conversion history.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile
from fastapi.concurrency import run_in_threadpool

from pdfxml import store
from pdfxml.auth import (
    TOKEN_COOKIE,
    create_token,
    get_current_user,
    hash_password,
    verify_password,
)
from pdfxml.config import get_settings
from pdfxml.db import (
    ConversionFilters,
    NewConversion,
    PaginationOptions,
    SortField,
    SortOptions,
    SortOrder,
    UserRecord,
    utcnow,
)
from pdfxml.errors import ConflictError, PdfExtractionError, StorageError
from pdfxml.pdf import extract_pdf
from pdfxml.schemas import (
    AuthResponse,
    ConversionDetail,
    ConversionListResponse,
    ConversionSummary,
    CurrentUserResponse,
    LoginRequest,
    MessageResponse,
    PaginationInfo,
    RegisterRequest,
    StorageStatusResponse,
    UserResponse,
)
from pdfxml.xml_document import build_conversion_xml

logger = logging.getLogger(__name__)

router = APIRouter()

_SORT_BY = {
    "date": SortField.CONVERTED_AT,
    "filename": SortField.FILENAME,
    "size": SortField.ORIGINAL_SIZE,
}


def _set_token_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        max_age=get_settings().jwt_expires_hours * 3600,
        httponly=True,
        samesite="lax",
    )


def _is_pdf(file: UploadFile) -> bool:
    if file.content_type == "application/pdf":
        return True
    return bool(file.filename) and file.filename.lower().endswith(".pdf")


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(payload: RegisterRequest, response: Response):
    if await store.get_user_by_email(payload.email) is not None:
        raise HTTPException(status_code=400, detail="Email already exists")
    try:
        user = await store.create_user(payload.email, hash_password(payload.password))
    except ConflictError:
        raise HTTPException(status_code=400, detail="Email already exists")
    except StorageError as exc:
        logger.error("Registration failed: %s", exc)
        raise HTTPException(status_code=500, detail="Server error during registration")
    token = create_token(user)
    _set_token_cookie(response, token)
    return AuthResponse(user=UserResponse.from_record(user), token=token)


@router.post("/login", response_model=AuthResponse)
async def login(payload: LoginRequest, response: Response):
    user = await store.get_user_by_email(payload.email)
    if user is None or not verify_password(payload.password, user.password):
        raise HTTPException(status_code=400, detail="Invalid email or password")
    token = create_token(user)
    _set_token_cookie(response, token)
    return AuthResponse(user=UserResponse.from_record(user), token=token)


@router.post("/logout", response_model=MessageResponse)
def logout(response: Response):
    response.delete_cookie(TOKEN_COOKIE)
    return MessageResponse(message="Logged out successfully")


@router.get("/user", response_model=CurrentUserResponse)
def current_user(user: UserRecord = Depends(get_current_user)):
    return CurrentUserResponse(user=UserResponse.from_record(user))


@router.post("/convert", response_model=ConversionDetail)
async def convert(
    file: Optional[UploadFile] = File(None),
    user: UserRecord = Depends(get_current_user),
):
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if not _is_pdf(file):
        raise HTTPException(status_code=400, detail="Only PDF files are allowed")

    limit = get_settings().max_upload_bytes
    if file.size is not None and file.size > limit:
        raise HTTPException(status_code=413, detail="File too large")
    pdf_bytes = await file.read(limit + 1)
    if len(pdf_bytes) > limit:
        raise HTTPException(status_code=413, detail="File too large")
    try:
        pdf_text = await run_in_threadpool(extract_pdf, pdf_bytes)
    except PdfExtractionError as exc:
        logger.info("Rejected upload %s: %s", file.filename, exc)
        raise HTTPException(status_code=400, detail=str(exc))

    filename = file.filename or "document.pdf"
    xml_content = build_conversion_xml(filename, utcnow(), pdf_text)
    try:
        conversion = await store.create_conversion(
            NewConversion(
                user_id=user.id,
                filename=filename,
                original_size=len(pdf_bytes),
                xml_content=xml_content,
            )
        )
    except StorageError as exc:
        logger.error("Could not store conversion of %s: %s", filename, exc)
        raise HTTPException(status_code=500, detail="Failed to convert PDF")
    logger.info(
        "Converted %s (%d pages, %d bytes) for user %s",
        filename,
        pdf_text.page_count,
        len(pdf_bytes),
        user.id,
    )
    return ConversionDetail.from_record(conversion)


@router.get("/conversions", response_model=ConversionListResponse)
async def list_conversions(
    search: Optional[str] = Query(None),
    sortBy: str = Query("date"),
    sortOrder: str = Query("desc"),
    dateFrom: Optional[datetime] = Query(None),
    dateTo: Optional[datetime] = Query(None),
    sizeMin: Optional[int] = Query(None, ge=0),
    sizeMax: Optional[int] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    user: UserRecord = Depends(get_current_user),
):
    filters = ConversionFilters(
        search=search or None,
        date_from=dateFrom,
        date_to=dateTo,
        size_min=sizeMin,
        size_max=sizeMax,
    )
    sort = SortOptions(
        field=_SORT_BY.get(sortBy, SortField.CONVERTED_AT),
        order=SortOrder.ASC if sortOrder == "asc" else SortOrder.DESC,
    )
    conversions = await store.get_conversions(
        user.id, filters, sort, PaginationOptions(page=page, limit=limit)
    )
    total = await store.get_conversions_count(user.id, filters)
    return ConversionListResponse(
        items=[ConversionSummary.from_record(c) for c in conversions],
        pagination=PaginationInfo(
            total=total, page=page, limit=limit, pages=math.ceil(total / limit)
        ),
    )


async def _owned_conversion(conversion_id: str, user: UserRecord, action: str):
    conversion = await store.get_conversion(conversion_id)
    if conversion is None:
        raise HTTPException(status_code=404, detail="Conversion not found")
    if conversion.user_id != user.id:
        raise HTTPException(
            status_code=403,
            detail=f"You do not have permission to {action} this conversion",
        )
    return conversion


@router.get("/conversions/{conversion_id}", response_model=ConversionDetail)
async def get_conversion(
    conversion_id: str, user: UserRecord = Depends(get_current_user)
):
    conversion = await _owned_conversion(conversion_id, user, "access")
    return ConversionDetail.from_record(conversion)


@router.delete("/conversions/{conversion_id}", response_model=MessageResponse)
async def delete_conversion(
    conversion_id: str, user: UserRecord = Depends(get_current_user)
):
    await _owned_conversion(conversion_id, user, "delete")
    if not await store.delete_conversion(conversion_id):
        raise HTTPException(status_code=500, detail="Failed to delete conversion")
    return MessageResponse(message="Conversion deleted successfully")


@router.get("/health", response_model=StorageStatusResponse)
def health():
    return StorageStatusResponse(**store.get_selector().status())
