"""Data models for the notes store."""

import datetime
from dataclasses import dataclass, field
from datetime import timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def validate_note_path(value: str, field_name: str = "Note path") -> str:
    """Validate that a note path is a safe, slash-separated relative path.

    Rejects:
    - Empty values
    - Leading or trailing slashes, and empty elements (``a//b``)
    - Current and parent directory elements (``.`` and ``..``)
    - Backslashes and NUL characters

    Args:
        value: The path to validate
        field_name: Name of the field for error messages

    Returns:
        The validated path (unchanged)

    Raises:
        ValueError: If the path is unsafe
    """
    if not value:
        raise ValueError(f"{field_name} cannot be empty")

    if "\x00" in value:
        raise ValueError(f"{field_name} cannot contain NUL characters")

    if "\\" in value:
        raise ValueError(f"{field_name} cannot contain backslashes")

    for element in value.split("/"):
        if element == "":
            raise ValueError(
                f"{field_name} cannot have empty segments "
                "(no leading/trailing/double slashes)"
            )
        if element in (".", ".."):
            raise ValueError(
                f"{field_name} cannot contain '.' or '..' elements (path traversal)"
            )

    return value


# Private-use code points delimiting match spans in search snippets.
# Stored note content never contains them, so every marker in a snippet
# comes from the search index.
SNIPPET_OPEN = "\ue000"
SNIPPET_CLOSE = "\ue001"

_SNIPPET_MARKERS = str.maketrans("", "", SNIPPET_OPEN + SNIPPET_CLOSE)


def strip_snippet_markers(value: str) -> str:
    """Remove the snippet marker code points from ``value``."""
    return value.translate(_SNIPPET_MARKERS)


def normalize_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    """Trim, drop empty entries and de-duplicate tags in first-seen order.

    Returns:
        The normalized list, or None when nothing remains.
    """
    if not tags:
        return None
    seen = set()
    result = []
    for tag in tags:
        name = strip_snippet_markers(str(tag)).strip()
        if name and name not in seen:
            seen.add(name)
            result.append(name)
    return result or None


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: datetime.datetime) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


class Note(BaseModel):
    """A user-authored markdown document identified by its path."""

    path: str = Field(..., description="Unique, safe relative path of the note")
    title: str = Field(..., description="Title of the note")
    text: str = Field(..., description="Markdown body of the note")
    tags: Optional[List[str]] = Field(
        default=None, description="Ordered unique tags, None when untagged"
    )
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last saved (UTC)"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Validate the path is safe to serve and store."""
        return validate_note_path(v)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        v = strip_snippet_markers(v)
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        """Validate that the text is not empty."""
        v = strip_snippet_markers(v)
        if not v.strip():
            raise ValueError("Text cannot be empty")
        return v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        """Normalize tags to a de-duplicated list of non-empty strings."""
        return normalize_tags(v)

    @field_validator("created_at", "updated_at")
    @classmethod
    def validate_timestamps(cls, v: datetime.datetime) -> datetime.datetime:
        """Store timestamps as UTC."""
        return ensure_timezone_aware(v).astimezone(timezone.utc)


class Attachment(BaseModel):
    """A content-addressed binary file owned by a note."""

    path: str = Field(..., description="Stored path: prefix/hash/filename")
    note_path: str = Field(..., description="Path of the owning note")
    data: bytes = Field(..., repr=False, description="File contents")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the file was first stored (UTC)"
    )

    model_config = {"frozen": True}

    @property
    def filename(self) -> str:
        """The sanitized filename (last path element)."""
        return self.path.rsplit("/", 1)[-1]

    @property
    def size(self) -> int:
        """Size of the stored bytes."""
        return len(self.data)


class SearchHit(BaseModel):
    """One ranked full-text search match.

    ``snippet`` is raw note text with match spans wrapped in
    ``SNIPPET_OPEN`` and ``SNIPPET_CLOSE``. It must be
    passed through ``highlight_snippet`` before reaching any HTML output.
    """

    path: str
    title: str
    tags: Optional[List[str]] = None
    snippet: str = ""
    rank: float = 0.0

    model_config = {"frozen": True}


@dataclass(frozen=True)
class Heading:
    """A heading found while rendering one document.

    Attributes:
        level: Nesting level, 1 for ``#`` through 6.
        text: Plain text of the heading with markup removed.
        slug: Anchor id assigned to the heading, unique within the render.
    """

    level: int
    text: str
    slug: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {"text": self.text, "slug": self.slug, "level": self.level}


@dataclass
class RenderedNote:
    """Output of one markdown render.

    Attributes:
        html: Rendered HTML fragment with heading ids applied.
        headings: Every slugged heading in document order.
        toc: Headings to show as a table of contents; empty when the
            document is too short or has too few headings.
        has_code: Whether the HTML contains a code block.
        preview: Plain text of the first paragraph, or empty when anything
            other than headings and comments precedes it.
    """

    html: str
    headings: List[Heading] = field(default_factory=list)
    toc: List[Heading] = field(default_factory=list)
    has_code: bool = False
    preview: str = ""
