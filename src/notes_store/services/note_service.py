"""Service layer for note operations.

Ties the write path (normalize text, derive title, extract tags, upsert)
and the read path (get, render) together over the repositories.
"""

import logging
import threading
from typing import BinaryIO, Dict, Iterable, List, Optional, Tuple, Union

from notes_store.exceptions import NoteNotFoundError
from notes_store.models.schema import Attachment, Note, RenderedNote
from notes_store.observability import traced
from notes_store.services.markdown_renderer import MarkdownRenderer
from notes_store.services.tag_extractor import extract_tags
from notes_store.storage.attachment_repository import AttachmentRepository
from notes_store.storage.note_repository import NoteRepository
from notes_store.utils import derive_title, normalize_note_text

logger = logging.getLogger(__name__)


def group_by_tag(notes: Iterable[Note]) -> List[Tuple[Optional[str], List[Note]]]:
    """Group notes under each of their tags for display.

    Groups appear in the order their tag is first seen while walking
    ``notes``; a note with several tags appears in each group. Untagged
    notes form a final group keyed by None. Within a group, notes keep
    their input order.
    """
    groups: Dict[str, List[Note]] = {}
    untagged: List[Note] = []
    for note in notes:
        if not note.tags:
            untagged.append(note)
            continue
        for tag in note.tags:
            groups.setdefault(tag, []).append(note)
    result: List[Tuple[Optional[str], List[Note]]] = list(groups.items())
    if untagged:
        result.append((None, untagged))
    return result


class NoteService:
    """Service for saving, reading and rendering notes.

    Args:
        repository: Note repository. A new one on the configured database
            is created when omitted.
        attachments: Attachment repository sharing the note repository's
            engine. Created when omitted.
        renderer: Markdown renderer used by ``render_note``.
    """

    def __init__(
        self,
        repository: Optional[NoteRepository] = None,
        attachments: Optional[AttachmentRepository] = None,
        renderer: Optional[MarkdownRenderer] = None,
    ):
        self.repository = repository or NoteRepository()
        self.attachments = attachments or AttachmentRepository(self.repository.engine)
        self.renderer = renderer or MarkdownRenderer()

    @traced("save_note")
    def save_text(self, path: str, text: Union[str, bytes]) -> Note:
        """Save raw note text submitted by a user.

        The text is normalized, the title is taken from its first line and
        tags from its ``<!-- Tags: ... -->`` directive.

        Raises:
            NoteValidationError: If the path is unsafe or the text is empty
                or not valid UTF-8.
        """
        self.repository.validate_path(path)
        body = normalize_note_text(text)
        tags = extract_tags(body)
        note = self.repository.upsert(
            path, derive_title(body), body, tags or None
        )
        logger.info(f"Saved note {path} ({len(tags)} tags)")
        return note

    @traced("get_note")
    def get_note(self, path: str) -> Optional[Note]:
        """Get a note by path."""
        return self.repository.get(path)

    @traced("list_notes")
    def list_notes(self, limit: Optional[int] = None, offset: int = 0) -> List[Note]:
        """List notes, most recently modified first."""
        return self.repository.list_notes(limit=limit, offset=offset)

    def list_notes_grouped(self) -> List[Tuple[Optional[str], List[Note]]]:
        """List notes grouped by tag, see :func:`group_by_tag`."""
        return group_by_tag(self.list_notes())

    def get_notes_by_tag(self, tag: str) -> List[Note]:
        """Notes carrying ``tag``, most recently created first."""
        return self.repository.list_by_tag(tag)

    @traced("delete_note")
    def delete_note(self, path: str) -> None:
        """Delete a note and everything it owns. Absent paths are ignored."""
        self.repository.delete(path)

    @traced("render_note")
    def render_note(self, path: str) -> Optional[Tuple[Note, RenderedNote]]:
        """Render a stored note, or return None when it does not exist."""
        note = self.repository.get(path)
        if note is None:
            return None
        return note, self.renderer.render(note.text)

    @traced("upload_attachment")
    def upload_attachment(
        self,
        note_path: str,
        filename: str,
        data: Union[bytes, BinaryIO],
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Store an attachment for a note and return its stored path.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        return self.attachments.put(
            note_path, filename, data, cancel=cancel, timeout=timeout
        )

    @traced("get_attachment")
    def get_attachment(self, path: str) -> Optional[Attachment]:
        """Get an attachment by its stored path."""
        return self.attachments.get(path)

    def list_attachments(self, note_path: str) -> List[Attachment]:
        """Attachments owned by a note.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        if self.repository.get(note_path) is None:
            raise NoteNotFoundError(note_path)
        return self.attachments.list_for_note(note_path)
