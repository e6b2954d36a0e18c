"""Cross-reference normalization - taskcal_lite.

Task frontmatter and feed properties refer to other notes in several shapes:
wiki-links (``[[Projects/Alpha]]``, ``[[Alpha|alias]]``), markdown links
(``[Alpha](Projects/Alpha.md)``), URLs, mapping records (``{"path": ...}``)
and plain strings. They are normalized once at ingestion so comparison and
filtering only ever deal with CrossReference variants.
"""

import logging
import re
from typing import Any, Optional

from .lite_models import CrossReference, LinkReference, LiteralReference, UnresolvedReference

logger = logging.getLogger(__name__)

_WIKI_LINK = re.compile(r"^\[\[([^\[\]|#]+)(?:#[^\[\]|]*)?(?:\|[^\[\]]*)?\]\]$")
_MARKDOWN_LINK = re.compile(r"^\[[^\[\]]*\]\(([^()\s]+)\)$")
_URI = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://\S+$")


def _clean_path(path: str) -> str:
    path = path.strip().replace("%20", " ")
    return path[:-3] if path.lower().endswith(".md") else path


def normalize_reference(value: Any) -> Optional[CrossReference]:
    """Normalize one raw reference value.

    Args:
        value: String, mapping or already-normalized reference

    Returns:
        CrossReference variant, or None for empty values
    """
    if value is None:
        return None
    if isinstance(value, (LiteralReference, LinkReference, UnresolvedReference)):
        return value

    if isinstance(value, dict):
        path = value.get("path")
        if isinstance(path, str) and path.strip():
            return LinkReference(path=_clean_path(path))
        uid = value.get("uid")
        if isinstance(uid, str) and uid.strip():
            return LiteralReference(text=uid.strip())
        logger.debug("Unrecognised reference mapping: %r", value)
        return UnresolvedReference(raw=repr(value))

    if not isinstance(value, str):
        return UnresolvedReference(raw=str(value))

    text = value.strip()
    if not text:
        return None

    match = _WIKI_LINK.match(text)
    if match:
        return LinkReference(path=_clean_path(match.group(1)))
    match = _MARKDOWN_LINK.match(text)
    if match:
        return LinkReference(path=_clean_path(match.group(1)))
    if _URI.match(text):
        return LinkReference(path=text)
    if "[" in text or "]" in text:
        # Bracketed text that is neither a wiki-link nor a markdown link
        return UnresolvedReference(raw=text)
    return LiteralReference(text=text)


def normalize_references(values: Any) -> tuple[CrossReference, ...]:
    """Normalize a single value or a list of values, dropping empties."""
    if values is None:
        return ()
    if not isinstance(values, (list, tuple)):
        values = [values]
    references = []
    for value in values:
        reference = normalize_reference(value)
        if reference is not None:
            references.append(reference)
    return tuple(references)


def reference_key(reference: CrossReference) -> tuple[str, str]:
    """Comparison key: variant kind plus case-folded target."""
    if isinstance(reference, LinkReference):
        return ("link", reference.path.casefold())
    if isinstance(reference, LiteralReference):
        return ("literal", reference.text.casefold())
    return ("unresolved", reference.raw)


def references_match(first: CrossReference, second: CrossReference) -> bool:
    """Whether two references point at the same target.

    A link also matches a literal naming its final path segment, so
    ``[[Projects/Alpha]]`` matches the plain string ``Alpha``.
    """
    if reference_key(first) == reference_key(second):
        return True
    pair = {type(first), type(second)}
    if pair == {LinkReference, LiteralReference}:
        link = first if isinstance(first, LinkReference) else second
        literal = second if link is first else first
        basename = link.path.rsplit("/", 1)[-1]  # type: ignore[union-attr]
        return basename.casefold() == literal.text.casefold()  # type: ignore[union-attr]
    return False
