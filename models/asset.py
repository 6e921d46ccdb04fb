"""Pydantic models for asset uploads, key registration and signed URLs."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UploadUrlRequest(BaseModel):
    """Ask for a signed URL to upload ``filename`` as ``file_type`` of a map."""

    file_type: str
    filename: str

    model_config = ConfigDict(extra="forbid")


class SignedUrlRead(BaseModel):
    url: str
    key: str
    method: str
    expires_at: datetime
    headers: Dict[str, str] = Field(default_factory=dict)


class UploadUrlRead(SignedUrlRead):
    content_type: str


class FileKeyUpdate(BaseModel):
    """Register an uploaded object's key against a map role."""

    file_type: str
    key: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="forbid")


class LayerSave(BaseModel):
    """GeoJSON object (or storage key) to store under a layer name."""

    data: Any

    model_config = ConfigDict(extra="forbid")


class FileOutcomeRead(BaseModel):
    filename: str
    success: bool
    key: Optional[str] = None
    error: Optional[str] = None


class BatchUploadRead(BaseModel):
    results: List[FileOutcomeRead]
    succeeded: int
    failed: int


class FolderEntry(BaseModel):
    name: str
    key: str
    url: str


class FolderListing(BaseModel):
    files: List[FolderEntry]
