"""Content pipeline: message source to rendered HTML plus indexable text."""

import html
import re

from forum.schemas.messages import ProcessedContent

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def normalize_search_text(text: str) -> str:
    """Collapse whitespace; this is what the full-text indexes store."""
    return " ".join(text.split())


def preprocess_content(source: str) -> ProcessedContent:
    """
    Render message source as escaped HTML paragraphs.

    Raw HTML in the source is never passed through.
    """
    paragraphs = [p.strip() for p in _PARAGRAPH_BREAK.split(source.strip()) if p.strip()]
    preprocessed = "".join(
        f"<p>{html.escape(paragraph).replace(chr(10), '<br>')}</p>" for paragraph in paragraphs
    )
    return ProcessedContent(preprocessed=preprocessed, search=normalize_search_text(source))
