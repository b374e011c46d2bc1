"""Repository for content-addressed note attachments."""

import base64
import hashlib
import logging
import threading
import time
from typing import BinaryIO, List, Optional, Union

from sqlalchemy import func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from notes_store.config import config
from notes_store.exceptions import (
    AttachmentTooLargeError,
    ErrorCode,
    InvalidFilenameError,
    NoteNotFoundError,
    StorageError,
    UploadCancelledError,
    ValidationError,
)
from notes_store.models.db_models import (
    DBFile,
    DBNote,
    get_session_factory,
    to_unix_micros,
)
from notes_store.models.schema import Attachment, utc_now
from notes_store.storage.base import Repository
from notes_store.storage.note_repository import NoteRepository, tagged_with

logger = logging.getLogger(__name__)

_INSERT_FILE = text(
    "INSERT INTO files(path, bytes, ctime, note_path) "
    "VALUES (:path, :bytes, :ctime, :note_path) "
    "ON CONFLICT(path) DO NOTHING"
)


class AttachmentRepository(Repository[Attachment]):
    """Stores binary files owned by notes.

    A file is stored at ``<prefix>/<base64url(sha1(bytes))>/<filename>``, so
    the same bytes under the same name always map to one row. Rows are
    removed by the database when their owning note is deleted.

    Args:
        engine: Engine shared with the NoteRepository owning the notes table.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.session_factory = get_session_factory(engine)

    @staticmethod
    def sanitize_filename(filename: Optional[str]) -> str:
        """Reduce an uploaded filename to a safe last path element.

        Raises:
            InvalidFilenameError: If nothing safe remains.
        """
        if not filename:
            raise InvalidFilenameError(filename)
        name = filename.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]
        if name in ("", ".", "..") or "\x00" in name:
            raise InvalidFilenameError(filename)
        return name

    @staticmethod
    def attachment_path(data: bytes, filename: str) -> str:
        """Stored path for ``data`` saved as the already sanitized ``filename``."""
        digest = hashlib.sha1(data).digest()
        segment = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
        return f"{config.attachments_prefix}/{segment}/{filename}"

    def put(
        self,
        owner_path: str,
        filename: str,
        data: Union[bytes, BinaryIO],
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Store an attachment for an existing note.

        Args:
            owner_path: Path of the owning note.
            filename: Client-supplied filename; directories are stripped.
            data: Bytes, or a binary stream read in configured chunks.
            cancel: Event that aborts the upload when set.
            timeout: Seconds allowed for reading and storing the body.

        Returns:
            The stored path. Uploading the same bytes and filename again
            returns the same path without writing anything.

        Raises:
            NoteNotFoundError: If the owning note does not exist.
            InvalidFilenameError: If the filename is empty or unsafe.
            AttachmentTooLargeError: If the body exceeds max_upload_bytes.
            ValidationError: If the body is empty.
            UploadCancelledError: If cancelled or timed out before commit.
            StorageError: If the write fails.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        NoteRepository.validate_path(owner_path)
        name = self.sanitize_filename(filename)
        if not self._note_exists(owner_path):
            raise NoteNotFoundError(owner_path)

        body = self._read_body(data, name, cancel, deadline)
        stored_path = self.attachment_path(body, name)

        try:
            with self.session_factory() as session:
                result = session.execute(
                    _INSERT_FILE,
                    {
                        "path": stored_path,
                        "bytes": body,
                        "ctime": to_unix_micros(utc_now()),
                        "note_path": owner_path,
                    },
                )
                self._check_cancelled(cancel, deadline, "commit")
                session.commit()
        except IntegrityError as e:
            # owner deleted between the existence check and the insert
            raise NoteNotFoundError(owner_path) from e
        except SQLAlchemyError as e:
            logger.error(f"Failed to store attachment {stored_path}: {e}")
            raise StorageError(
                f"Failed to store attachment {name}",
                operation="put",
                path=stored_path,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

        if result.rowcount:
            logger.info(f"Stored attachment {stored_path} ({len(body)} bytes)")
        else:
            logger.debug(f"Attachment {stored_path} already stored")
        return stored_path

    def _read_body(
        self,
        data: Union[bytes, BinaryIO],
        filename: str,
        cancel: Optional[threading.Event],
        deadline: Optional[float],
    ) -> bytes:
        """Read the upload body, enforcing the size ceiling while reading."""
        limit = config.max_upload_bytes
        self._check_cancelled(cancel, deadline, "read")

        if isinstance(data, (bytes, bytearray, memoryview)):
            body = bytes(data)
            if len(body) > limit:
                raise AttachmentTooLargeError(limit, filename)
        else:
            chunks = []
            size = 0
            while True:
                chunk = data.read(config.upload_chunk_bytes)
                if not chunk:
                    break
                size += len(chunk)
                if size > limit:
                    raise AttachmentTooLargeError(limit, filename)
                chunks.append(chunk)
                self._check_cancelled(cancel, deadline, "read")
            body = b"".join(chunks)

        if not body:
            raise ValidationError(
                "Attachment is empty",
                field="data",
                code=ErrorCode.ATTACHMENT_EMPTY,
            )
        return body

    @staticmethod
    def _check_cancelled(
        cancel: Optional[threading.Event], deadline: Optional[float], stage: str
    ) -> None:
        if cancel is not None and cancel.is_set():
            raise UploadCancelledError("Upload cancelled", stage=stage)
        if deadline is not None and time.monotonic() > deadline:
            raise UploadCancelledError("Upload timed out", stage=stage)

    def _note_exists(self, path: str) -> bool:
        with self.session_factory() as session:
            return session.get(DBNote, path) is not None

    @staticmethod
    def _db_file_to_model(db_file: DBFile) -> Attachment:
        return Attachment(
            path=db_file.path,
            note_path=db_file.note_path,
            data=db_file.data,
            created_at=db_file.ctime,
        )

    def get(self, path: str) -> Optional[Attachment]:
        """Get an attachment by stored path, or None when it does not exist."""
        if not path:
            return None
        try:
            with self.session_factory() as session:
                db_file = session.get(DBFile, path)
                return self._db_file_to_model(db_file) if db_file else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to read attachment {path}: {e}")
            raise StorageError(
                f"Failed to read attachment {path}",
                operation="get",
                path=path,
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    def list_for_note(self, note_path: str) -> List[Attachment]:
        """List attachments owned by a note, oldest first."""
        query = (
            select(DBFile)
            .where(DBFile.note_path == note_path)
            .order_by(DBFile.ctime, DBFile.path)
        )
        with self.session_factory() as session:
            return [
                self._db_file_to_model(row)
                for row in session.execute(query).scalars()
            ]

    def list_for_tag(self, tag: str) -> List[Attachment]:
        """List attachments of notes carrying ``tag``, newest note first."""
        query = (
            select(DBFile)
            .join(DBNote, DBNote.path == DBFile.note_path)
            .where(tagged_with(tag))
            .order_by(DBNote.ctime.desc(), DBFile.path)
        )
        with self.session_factory() as session:
            return [
                self._db_file_to_model(row)
                for row in session.execute(query).scalars()
            ]

    def count(self) -> int:
        """Count stored attachments."""
        with self.session_factory() as session:
            return session.scalar(select(func.count(DBFile.path))) or 0
