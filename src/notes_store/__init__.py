"""
Notes Store - the persistent core of a personal notes server.

This package keeps user-authored markdown notes in SQLite, mirrors them into
an FTS5 full-text index inside the same transaction, stores content-addressed
attachments owned by notes, and renders notes to HTML with stable heading
anchors, a table of contents and a preview snippet.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notes-store")
except PackageNotFoundError:
    __version__ = "0.3.0"
