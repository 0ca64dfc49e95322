"""Pydantic schemas for file API endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class FileOut(BaseModel):
    """A stored file and its current size."""

    name: str
    size: int


class FileMetadataOut(BaseModel):
    name: str
    size: int
    content_type: str | None = None


class FileListOut(BaseModel):
    items: list[str] = Field(default_factory=list)
    total: int = 0


class FileLengthUpdate(BaseModel):
    """Request body for shortening a file."""

    length: int


class FileBatchDelete(BaseModel):
    names: list[str] = Field(default_factory=list)


class FileBatchDeleteOut(BaseModel):
    requested: int
    not_deleted: list[str] = Field(default_factory=list)
