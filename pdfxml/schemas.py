"""
Pydantic schemas for the HTTP API.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from pdfxml.db import ConversionRecord, UserRecord

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_SYMBOL = re.compile(r"[^a-zA-Z0-9]")


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    confirmPassword: str = Field(..., min_length=1)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        if not _UPPER.search(value):
            raise ValueError("Password must contain at least one uppercase letter")
        if not _LOWER.search(value):
            raise ValueError("Password must contain at least one lowercase letter")
        if not _SYMBOL.search(value):
            raise ValueError("Password must contain at least one special character")
        return value

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.confirmPassword:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserResponse(BaseModel):
    id: str
    email: str
    createdAt: datetime

    @classmethod
    def from_record(cls, user: UserRecord) -> "UserResponse":
        return cls(id=user.id, email=user.email, createdAt=user.created_at)


class AuthResponse(BaseModel):
    user: UserResponse
    token: str


class CurrentUserResponse(BaseModel):
    user: UserResponse


class MessageResponse(BaseModel):
    message: str


class ConversionDetail(BaseModel):
    id: str
    filename: str
    convertedAt: datetime
    xmlContent: str

    @classmethod
    def from_record(cls, conversion: ConversionRecord) -> "ConversionDetail":
        return cls(
            id=conversion.id,
            filename=conversion.filename,
            convertedAt=conversion.converted_at,
            xmlContent=conversion.xml_content,
        )


class ConversionSummary(BaseModel):
    id: str
    filename: str
    convertedAt: datetime
    originalSize: int

    @classmethod
    def from_record(cls, conversion: ConversionRecord) -> "ConversionSummary":
        return cls(
            id=conversion.id,
            filename=conversion.filename,
            convertedAt=conversion.converted_at,
            originalSize=conversion.original_size,
        )


class PaginationInfo(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class ConversionListResponse(BaseModel):
    items: list[ConversionSummary]
    pagination: PaginationInfo


class StorageStatusResponse(BaseModel):
    state: str
    migration_attempted: bool
    last_migration: Optional[dict] = None
    switch_count: int
    probe_failures: int
    persistent: Optional[dict] = None
