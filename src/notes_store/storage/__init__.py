"""Storage layer for the notes store."""

from notes_store.storage.attachment_repository import AttachmentRepository
from notes_store.storage.base import Repository
from notes_store.storage.fts_index import FtsIndex
from notes_store.storage.note_repository import NoteRepository

__all__ = [
    "Repository",
    "FtsIndex",
    "NoteRepository",
    "AttachmentRepository",
]
