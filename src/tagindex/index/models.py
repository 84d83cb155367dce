"""SQLModel definitions and value types for the code snippets index.

Single source of truth for all table schemas.

Tables:
- snippet_sources: one row per extracted (path, cache_key); the anchor every
  other row references
- code_snippets: extracted snippets, cascade-deleted with their source
- code_snippets_tags: associations making a source visible within a tag

Content is addressed by (path, cache_key). A changed file arrives with a new
cache key and produces new rows; existing snippet rows are never updated.
"""

from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy import ForeignKeyConstraint, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from tagindex.config.constants import SNIPPETS_ARTIFACT_ID, TAG_SEPARATOR

# ============================================================================
# ENUMS
# ============================================================================


class IndexResultType(str, Enum):
    """Action kinds of a refresh diff, in their wire form."""

    COMPUTE = "compute"
    DELETE = "del"
    ADD_TAG = "addTag"
    REMOVE_TAG = "removeTag"


# Fixed processing order. RemoveTag precedes AddTag and Delete so a Delete
# never races ahead of the RemoveTag for the same path within a run.
PROCESSING_ORDER: tuple[IndexResultType, ...] = (
    IndexResultType.COMPUTE,
    IndexResultType.REMOVE_TAG,
    IndexResultType.ADD_TAG,
    IndexResultType.DELETE,
)


# ============================================================================
# VALUE TYPES
# ============================================================================


@dataclass(frozen=True, slots=True)
class Tag:
    """A logical index instance: one directory on one branch for one artifact."""

    directory: str
    branch: str
    artifact_id: str = SNIPPETS_ARTIFACT_ID

    def __str__(self) -> str:
        return TAG_SEPARATOR.join((self.directory, self.branch, self.artifact_id))


@dataclass(frozen=True, slots=True)
class PathAndCacheKey:
    """A file path paired with the fingerprint of its content."""

    path: str
    cache_key: str


@dataclass(frozen=True, slots=True)
class Snippet:
    """One unit produced by an extractor. Lines are zero-based and inclusive."""

    title: str
    content: str
    signature: str
    start_line: int
    end_line: int


@dataclass
class RefreshDiff:
    """Planner output for one tag: four disjoint batches of entries."""

    compute: list[PathAndCacheKey] = field(default_factory=list)
    delete: list[PathAndCacheKey] = field(default_factory=list)
    add_tag: list[PathAndCacheKey] = field(default_factory=list)
    remove_tag: list[PathAndCacheKey] = field(default_factory=list)

    def entries_for(self, result_type: IndexResultType) -> list[PathAndCacheKey]:
        return {
            IndexResultType.COMPUTE: self.compute,
            IndexResultType.DELETE: self.delete,
            IndexResultType.ADD_TAG: self.add_tag,
            IndexResultType.REMOVE_TAG: self.remove_tag,
        }[result_type]

    @property
    def is_empty(self) -> bool:
        return not (self.compute or self.delete or self.add_tag or self.remove_tag)

    def __len__(self) -> int:
        return len(self.compute) + len(self.delete) + len(self.add_tag) + len(self.remove_tag)


@dataclass(frozen=True)
class CompletionEvent:
    """One acknowledged batch: every entry here has been committed."""

    entries: tuple[PathAndCacheKey, ...]
    result_type: IndexResultType


# ============================================================================
# TABLES
# ============================================================================


class SnippetSource(SQLModel, table=True):
    """Extracted content, addressed by (path, cache_key).

    Exists even when extraction produced zero snippets, so that a later AddTag
    can still reference it.
    """

    __tablename__ = "snippet_sources"
    __table_args__ = (UniqueConstraint("path", "cache_key", name="uq_snippet_sources_key"),)

    id: int | None = Field(default=None, primary_key=True)
    path: str = Field(index=True)
    cache_key: str
    snippet_count: int = 0
    indexed_at: float | None = None


class CodeSnippet(SQLModel, table=True):
    """One extracted snippet. Never updated in place."""

    __tablename__ = "code_snippets"
    __table_args__ = (
        ForeignKeyConstraint(
            ["path", "cache_key"],
            ["snippet_sources.path", "snippet_sources.cache_key"],
            ondelete="CASCADE",
        ),
        UniqueConstraint("path", "cache_key", "ordinal", name="uq_code_snippets_key"),
    )

    id: int | None = Field(default=None, primary_key=True)
    path: str = Field(index=True)
    cache_key: str
    ordinal: int  # Position in extractor output
    title: str
    content: str
    signature: str
    start_line: int
    end_line: int


class CodeSnippetTag(SQLModel, table=True):
    """Association of a source with a tag.

    No cascade: a source cannot be deleted while any tag still references it.
    """

    __tablename__ = "code_snippets_tags"
    __table_args__ = (
        ForeignKeyConstraint(
            ["path", "cache_key"],
            ["snippet_sources.path", "snippet_sources.cache_key"],
        ),
        UniqueConstraint(
            "path",
            "cache_key",
            "directory",
            "branch",
            "artifact_id",
            name="uq_code_snippets_tags_key",
        ),
        Index("ix_code_snippets_tags_tag", "directory", "branch", "artifact_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    path: str
    cache_key: str
    directory: str
    branch: str
    artifact_id: str


# ============================================================================
# READ MODELS (not tables)
# ============================================================================


class SnippetRecord(SQLModel):
    """A stored snippet as returned by read queries."""

    id: int
    path: str
    cache_key: str
    title: str
    content: str
    signature: str
    start_line: int
    end_line: int


class AssociationRecord(SQLModel):
    """A stored tag association."""

    path: str
    cache_key: str
    directory: str
    branch: str
    artifact_id: str

    @property
    def tag(self) -> Tag:
        return Tag(self.directory, self.branch, self.artifact_id)

    @property
    def key(self) -> PathAndCacheKey:
        return PathAndCacheKey(self.path, self.cache_key)


class PathsAndSignatures(SQLModel):
    """One page of path -> signatures for a tag."""

    signatures: dict[str, list[str]]
    offset: int
    has_more: bool
