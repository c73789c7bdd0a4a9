"""
Pydantic models for tagtime.

Contains data models for vault configuration, indexed documents, the
persisted index metadata, search options and results, and saved or read notes.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

VaultType = Literal["plain", "obsidian", "logseq"]


class VaultConfig(BaseModel):
    """Model for one registered local vault."""

    model_config = ConfigDict(populate_by_name=True)

    type: VaultType = "plain"
    path: str
    notes_folder: str | None = Field(default=None, alias="notesFolder")
    daily_notes_folder: str | None = Field(default=None, alias="dailyNotesFolder")
    templates_folder: str | None = Field(default=None, alias="templatesFolder")
    attachments_folder: str | None = Field(default=None, alias="attachmentsFolder")
    pages_folder: str | None = Field(default=None, alias="pagesFolder")
    journals_folder: str | None = Field(default=None, alias="journalsFolder")


class IndexedDocument(BaseModel):
    """Model for one searchable markdown file."""

    id: str
    title: str
    content: str
    tags: list[str]
    folder: str
    modified: float


class IndexCacheMeta(BaseModel):
    """Model for the metadata of a vault's on-disk index snapshot."""

    model_config = ConfigDict(populate_by_name=True)

    version: int
    vault_path: str = Field(alias="vaultPath")
    last_built: str = Field(alias="lastBuilt")
    file_count: int = Field(alias="fileCount")
    file_mtimes: dict[str, float] = Field(default_factory=dict, alias="fileMtimes")


class IndexStats(BaseModel):
    """Model for index introspection."""

    file_count: int
    last_built: str
    cached: bool


class SearchOptions(BaseModel):
    """Model for caller-facing search options."""

    limit: int = 10
    folder: str | None = None
    tag: str | None = None
    fuzzy: bool | float | None = None
    prefix: bool | None = None
    exact: bool = False
    force_rebuild: bool = False


class SearchResult(BaseModel):
    """Model for a search result."""

    path: str
    absolute_path: str
    title: str
    snippet: str
    modified: datetime | None = None
    score: float
    matched_terms: list[str]
    matched_fields: list[str]
    tags: list[str]


class SaveResult(BaseModel):
    """Model for the result of saving a note."""

    path: str
    absolute_path: str
    appended: bool = False


class LocalNote(BaseModel):
    """Model for a note read back from a vault."""

    path: str
    absolute_path: str
    title: str
    content: str
    body: str
    frontmatter: dict[str, Any] | None = None
    modified: datetime | None = None


class VaultInfo(BaseModel):
    """Model for vault details."""

    name: str
    type: VaultType
    path: str
    note_count: int | None = None
    last_modified: datetime | None = None
