"""Utility functions for the notes store."""
from typing import Union

from notes_store.exceptions import ErrorCode, NoteValidationError
from notes_store.models.schema import strip_snippet_markers

# Characters stripped from the first line of a note to derive its title
_TITLE_CUTSET = "#\t\r\n "

DEFAULT_TITLE = "Untitled"


def normalize_note_text(text: Union[str, bytes]) -> str:
    """Normalize raw note text submitted by a caller.

    Decodes bytes as strict UTF-8, removes the search snippet markers,
    converts CRLF line endings to LF and trims surrounding whitespace.

    Args:
        text: Raw note body as submitted.

    Returns:
        The normalized text.

    Raises:
        NoteValidationError: If the text is not valid UTF-8 or is empty
            after trimming.
    """
    if isinstance(text, (bytes, bytearray)):
        try:
            text = bytes(text).decode("utf-8")
        except UnicodeDecodeError as e:
            raise NoteValidationError(
                "Text is not a valid utf8",
                field="text",
                code=ErrorCode.NOTE_TEXT_NOT_UTF8,
            ) from e
    if not isinstance(text, str):
        raise NoteValidationError(
            "Text must be a string", field="text", code=ErrorCode.NOTE_TEXT_REQUIRED
        )
    try:
        # Lone surrogates survive str construction but cannot be stored
        text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise NoteValidationError(
            "Text is not a valid utf8",
            field="text",
            code=ErrorCode.NOTE_TEXT_NOT_UTF8,
        ) from e

    text = strip_snippet_markers(text).strip().replace("\r\n", "\n")
    if not text:
        raise NoteValidationError(
            "Empty text", field="text", code=ErrorCode.NOTE_TEXT_REQUIRED
        )
    return text


def derive_title(text: str) -> str:
    """Derive a note title from the first line of its text.

    Leading and trailing ``#``, tabs, line breaks and spaces are stripped,
    so a markdown heading on the first line becomes the title.

    Examples:
        "# Shopping list\\n\\n- milk" -> "Shopping list"
        "plain first line\\nrest" -> "plain first line"
        "###\\nbody" -> "Untitled"
    """
    first_line, _, _ = text.partition("\n")
    title = first_line.strip(_TITLE_CUTSET)
    return title or DEFAULT_TITLE
