"""Markdown rendering with heading anchors, table of contents and preview.

Each call to :meth:`MarkdownRenderer.render` builds its own
``markdown.Markdown`` instance, so heading slugs and the raw HTML stash
belong to that render alone and concurrent renders share nothing.
"""
import html
import logging
import re
import xml.etree.ElementTree as etree
from typing import List, Optional, Sequence

import markdown
from markdown.treeprocessors import Treeprocessor
from markdown.util import HTML_PLACEHOLDER_RE

from notes_store.config import config
from notes_store.models.schema import Heading, RenderedNote

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = ("extra", "sane_lists")

HEADING_TAGS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}

# Attempts per heading: the bare slug, then slug-1 .. slug-99
MAX_SLUG_ATTEMPTS = 100

_WHITESPACE_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"\S+")
# A stashed value that stands for a character rather than markup
_ENTITY_RE = re.compile(r"&(?:#[0-9]+|#[xX][0-9a-fA-F]+|[A-Za-z][A-Za-z0-9]*);")


def slugify(text: str) -> str:
    """Turn heading text into an anchor id.

    Letters and digits are lower-cased, every run of other characters after
    the first letter or digit becomes a single hyphen, and trailing hyphens
    are removed.

    Examples:
        "Hello, world" -> "hello-world"
        "multi    spaces" -> "multi-spaces"
        "- leading dash" -> "leading-dash"
    """
    out = []
    seen_alnum = False
    prev_dash = False
    for ch in text:
        if ch.isalpha() or ch.isnumeric():
            seen_alnum = True
            prev_dash = False
            out.append(ch.lower())
        elif seen_alnum and not prev_dash:
            prev_dash = True
            out.append("-")
    return "".join(out).rstrip("-")


def word_count_at_least(text: str, want: int) -> bool:
    """Whether ``text`` has at least ``want`` whitespace-separated words."""
    if want <= 0:
        return True
    for count, _ in enumerate(_WORD_RE.finditer(text), start=1):
        if count >= want:
            return True
    return False


def _is_entity(value: object) -> bool:
    return isinstance(value, str) and _ENTITY_RE.fullmatch(value) is not None


class _DocumentScanner(Treeprocessor):
    """Assigns heading ids and finds the preview paragraph.

    Runs after inline processing and unescaping, so heading and paragraph
    text is final.
    """

    def __init__(self, md: markdown.Markdown) -> None:
        super().__init__(md)
        self.headings: List[Heading] = []
        self.preview = ""
        self._seen = set()

    def run(self, root: etree.Element) -> None:
        for el in root.iter():
            level = HEADING_TAGS.get(el.tag)
            if level is not None:
                self._assign_slug(el, level)
        self.preview = self._first_paragraph(root)

    def _assign_slug(self, el: etree.Element, level: int) -> None:
        text = self._plain_text(el).strip()
        name = slugify(text)
        if not name:
            return
        for i in range(MAX_SLUG_ATTEMPTS):
            candidate = name if i == 0 else f"{name}-{i}"
            if candidate not in self._seen:
                self._seen.add(candidate)
                el.set("id", candidate)
                self.headings.append(Heading(level=level, text=text, slug=candidate))
                return
        logger.debug(f"No free anchor for heading {text!r}")

    def _first_paragraph(self, root: etree.Element) -> str:
        for el in root:
            if el.tag in HEADING_TAGS:
                continue
            if el.tag != "p":
                return ""
            raw = self._stashed_block(el)
            if raw is None or _is_entity(raw):
                return _WHITESPACE_RE.sub(" ", self._plain_text(el)).strip()
            if isinstance(raw, str) and raw.lstrip().startswith("<!--"):
                continue
            return ""
        return ""

    def _plain_text(self, element: etree.Element) -> str:
        """Text content of an element with markup removed.

        Entity references like ``&amp;`` are stashed by Python-Markdown the
        same way as raw HTML tags; they are put back as the character they
        name, while stashed tags are dropped.
        """
        blocks = self.md.htmlStash.rawHtmlBlocks

        def restore(match: "re.Match[str]") -> str:
            index = int(match.group(1))
            value = blocks[index] if index < len(blocks) else None
            return html.unescape(value) if _is_entity(value) else ""

        return HTML_PLACEHOLDER_RE.sub(restore, "".join(element.itertext()))

    def _stashed_block(self, el: etree.Element) -> Optional[object]:
        """The raw HTML block a placeholder paragraph stands for, if any."""
        if len(el) or not el.text:
            return None
        match = HTML_PLACEHOLDER_RE.fullmatch(el.text.strip())
        if not match:
            return None
        index = int(match.group(1))
        blocks = self.md.htmlStash.rawHtmlBlocks
        return blocks[index] if index < len(blocks) else None


class MarkdownRenderer:
    """Renders note text to HTML plus heading and preview metadata.

    Args:
        extensions: Python-Markdown extensions to enable.
        toc_min_headings: Headings needed before a table of contents is
            shown. Defaults to ``config.toc_min_headings``.
        toc_min_words: Words needed before a table of contents is shown.
            Defaults to ``config.toc_min_words``.
    """

    def __init__(
        self,
        extensions: Sequence[str] = DEFAULT_EXTENSIONS,
        toc_min_headings: Optional[int] = None,
        toc_min_words: Optional[int] = None,
    ) -> None:
        self.extensions = list(extensions)
        self.toc_min_headings = toc_min_headings
        self.toc_min_words = toc_min_words

    def render(self, text: str) -> RenderedNote:
        md = markdown.Markdown(extensions=self.extensions)
        scanner = _DocumentScanner(md)
        md.treeprocessors.register(scanner, "notes_scanner", -10)
        output = md.convert(text)

        return RenderedNote(
            html=output,
            headings=scanner.headings,
            toc=self._table_of_contents(text, scanner.headings),
            has_code="<pre><code" in output,
            preview=scanner.preview,
        )

    def _table_of_contents(self, text: str, headings: List[Heading]) -> List[Heading]:
        min_headings = (
            config.toc_min_headings
            if self.toc_min_headings is None
            else self.toc_min_headings
        )
        min_words = (
            config.toc_min_words if self.toc_min_words is None else self.toc_min_words
        )
        if len(headings) < min_headings or not word_count_at_least(text, min_words):
            return []
        return list(headings)


def render_markdown(text: str) -> RenderedNote:
    """Render ``text`` with the default renderer settings."""
    return MarkdownRenderer().render(text)
