"""Identifier components: one lowercase, URL-safe segment per file or folder name"""

import re
import unicodedata


_DROP_RE = re.compile(r'[^\w\s.-]')
_SEP_RE = re.compile(r'[\s_-]+')
_DOTS_RE = re.compile(r'\.{2,}')


def slug_component(name: str) -> str:
    """Slug a single path component of a document identifier.

    Text is NFKC-normalized and case-folded, so non-ASCII letters stay as
    unicode segments ('Café' -> 'café'). Dots are kept inside a component
    ('v1.2') but stripped from its ends, which rules out '.' and '..'.
    Returns '' when nothing usable is left; derive_identifier rejects that.
    """
    text = unicodedata.normalize('NFKC', name).casefold()
    text = _DROP_RE.sub('', text)
    text = _SEP_RE.sub('-', text)
    text = _DOTS_RE.sub('.', text)
    return text.strip('-.')
