"""Memory service data model and outbound request schemas."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

MEMORY_TYPES = ("context", "project", "knowledge", "reference", "personal", "workflow")
MEMORY_STATUSES = ("active", "archived", "draft", "deleted")
SEARCH_MODES = ("vector", "text", "hybrid")
CHUNKING_STRATEGIES = ("semantic", "fixed-size", "paragraph", "sentence", "code-block")

MemoryType = Literal["context", "project", "knowledge", "reference", "personal", "workflow"]
MemoryStatus = Literal["active", "archived", "draft", "deleted"]
SearchMode = Literal["vector", "text", "hybrid"]
ChunkingStrategy = Literal["semantic", "fixed-size", "paragraph", "sentence", "code-block"]

Title = Annotated[str, StringConstraints(min_length=1, max_length=500)]
Content = Annotated[str, StringConstraints(min_length=1, max_length=50_000)]
Tag = Annotated[str, StringConstraints(min_length=1, max_length=50)]
HexColor = Annotated[str, StringConstraints(pattern=r"^#[0-9A-Fa-f]{6}$")]


def _dedupe(tags: list[str] | None) -> list[str] | None:
    if tags is None:
        return None
    return list(dict.fromkeys(tags))


# ── Resources (server-owned, parsed leniently) ───────────────


class MemoryEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    title: str = ""
    content: str = ""
    summary: Optional[str] = None
    memory_type: str = "context"
    status: str = "active"
    tags: list[str] = Field(default_factory=list)
    topic_id: Optional[str] = None
    project_ref: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    access_count: int = 0
    relevance_score: Optional[float] = None
    similarity_score: Optional[float] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_or_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_or_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def score(self) -> float | None:
        """Best available relevance figure (0-1) for search hits."""
        for value in (self.similarity_score, self.relevance_score):
            if value is not None:
                return value
        similarity = (self.model_extra or {}).get("similarity")
        return similarity if isinstance(similarity, (int, float)) else None


class MemoryTopic(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    parent_topic_id: Optional[str] = None
    is_system: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# ── Request schemas ──────────────────────────────────────────


class ChunkingOptions(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    strategy: ChunkingStrategy = "semantic"
    max_chunk_size: Optional[int] = Field(default=None, ge=1, alias="maxChunkSize")
    overlap: Optional[int] = Field(default=None, ge=0)


class PreprocessingOptions(BaseModel):
    """Server-side preprocessing applied when a memory is stored."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    chunking: Optional[ChunkingOptions] = None
    clean_content: Optional[bool] = Field(default=None, alias="cleanContent")
    extract_metadata: Optional[bool] = Field(default=None, alias="extractMetadata")


class CreateMemoryRequest(BaseModel):
    title: Title
    content: Content
    summary: Optional[Annotated[str, StringConstraints(max_length=1000)]] = None
    memory_type: MemoryType = "context"
    topic_id: Optional[UUID] = None
    project_ref: Optional[Annotated[str, StringConstraints(max_length=100)]] = None
    tags: list[Tag] = Field(default_factory=list, max_length=20)
    metadata: Optional[dict[str, Any]] = None
    preprocessing: Optional[PreprocessingOptions] = None

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: list[str] | None) -> list[str] | None:
        return _dedupe(value)


class UpdateMemoryRequest(BaseModel):
    title: Optional[Title] = None
    content: Optional[Content] = None
    summary: Optional[Annotated[str, StringConstraints(max_length=1000)]] = None
    memory_type: Optional[MemoryType] = None
    status: Optional[MemoryStatus] = None
    topic_id: Optional[UUID] = None
    project_ref: Optional[Annotated[str, StringConstraints(max_length=100)]] = None
    tags: Optional[list[Tag]] = Field(default=None, max_length=20)
    metadata: Optional[dict[str, Any]] = None
    # Reprocessing flags for content changes
    rechunk: Optional[bool] = None
    regenerate_embedding: Optional[bool] = None

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: list[str] | None) -> list[str] | None:
        return _dedupe(value)


class SearchMemoryRequest(BaseModel):
    query: Annotated[str, StringConstraints(min_length=1, max_length=1000)]
    memory_types: Optional[list[MemoryType]] = None
    tags: Optional[list[str]] = None
    topic_id: Optional[UUID] = None
    project_ref: Optional[str] = None
    status: MemoryStatus = "active"
    limit: int = Field(default=20, ge=1, le=100)
    threshold: float = Field(default=0.7, ge=0, le=1)


class CreateTopicRequest(BaseModel):
    name: Annotated[str, StringConstraints(min_length=1, max_length=100)]
    description: Optional[Annotated[str, StringConstraints(max_length=500)]] = None
    color: Optional[HexColor] = None
    icon: Optional[Annotated[str, StringConstraints(max_length=50)]] = None
    parent_topic_id: Optional[UUID] = None


class UpdateTopicRequest(BaseModel):
    name: Optional[Annotated[str, StringConstraints(min_length=1, max_length=100)]] = None
    description: Optional[Annotated[str, StringConstraints(max_length=500)]] = None
    color: Optional[HexColor] = None
    icon: Optional[Annotated[str, StringConstraints(max_length=50)]] = None
    parent_topic_id: Optional[UUID] = None


class DateRange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None


class SearchFilters(BaseModel):
    tags: Optional[list[str]] = None
    project_id: Optional[UUID] = None
    date_range: Optional[DateRange] = None


class EnhancedSearchRequest(BaseModel):
    query: Annotated[str, StringConstraints(min_length=1, max_length=1000)]
    type: Optional[MemoryType] = None
    threshold: float = Field(default=0.7, ge=0, le=1)
    limit: int = Field(default=20, ge=1, le=100)
    search_mode: SearchMode = "hybrid"
    filters: Optional[SearchFilters] = None
    include_chunks: bool = False


class AnalyticsDateRange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None
    group_by: Literal["day", "week", "month"] = "day"
