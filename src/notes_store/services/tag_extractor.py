"""Tag directive parsing.

A note declares its tags in an HTML comment anywhere in its text::

    <!-- Tags: recipes, baking -->

Only the first comment containing the ``Tags:`` keyword is used, and only
up to the end of its line.
"""
import re
from typing import List

from notes_store.models.schema import normalize_tags

TAGS_KEYWORD = "Tags:"

_COMMENT_RE = re.compile(r"<!--(.*?)-->", re.DOTALL)


def extract_tags(text: str) -> List[str]:
    """Return the tags declared in ``text``.

    Entries are trimmed, empty entries dropped and duplicates removed in
    first-seen order. A missing or malformed directive yields an empty list;
    this function never raises.

    Examples:
        "<!-- Tags: tag2,tag1, tag2, tag3, -->" -> ["tag2", "tag1", "tag3"]
        "<!-- Tags: a" (unterminated) -> []
    """
    if not text:
        return []
    for match in _COMMENT_RE.finditer(text):
        body = match.group(1)
        _, keyword, rest = body.partition(TAGS_KEYWORD)
        if not keyword:
            continue
        line = rest.split("\n", 1)[0]
        return normalize_tags(line.split(",")) or []
    return []
