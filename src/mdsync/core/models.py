"""Data models for parsed documents, image references, and file operations"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ParsedContent(BaseModel):
    """A document split into an optional metadata block and a body."""
    metadata: Optional[str] = None  # None = no block; "" = explicit empty block
    body: str = ""
    is_valid: bool = True
    error: Optional[str] = None


class YamlValidation(BaseModel):
    """Outcome of validating metadata text for the metadata panel."""
    is_valid: bool
    error: Optional[str] = None
    line: Optional[int] = None      # 1-based line of the YAML problem, when known


class ImagePathEntry(BaseModel):
    """One image reference found in a document body."""
    relative_path: str
    absolute_path: str


class RenameOp(BaseModel):
    old_relative: str
    new_relative: str
    old_absolute: str
    new_absolute: str


class DeleteOp(BaseModel):
    relative_path: str
    absolute_path: str
    used_in_files: list[str] = Field(default_factory=list)


class RenameFailure(BaseModel):
    op: RenameOp
    error: str


class DeleteFailure(BaseModel):
    path: str
    error: str


class RenameResult(BaseModel):
    succeeded: list[RenameOp] = Field(default_factory=list)
    failed: list[RenameFailure] = Field(default_factory=list)


class DeleteResult(BaseModel):
    succeeded: list[str] = Field(default_factory=list)
    failed: list[DeleteFailure] = Field(default_factory=list)


class SavedImage(BaseModel):
    """A pasted or uploaded image written next to the document."""
    relative_path: str
    absolute_path: str
    display_uri: str


class SyncState(str, Enum):
    """Editor-side synchronization states"""
    IDLE = "idle"
    AWAITING_DISPLAY_TRANSFORM = "awaiting_display_transform"
    EDITING = "editing"
    PENDING_SAVE = "pending_save"
