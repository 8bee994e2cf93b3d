"""Paragraph index for revision requests.

Paragraphs are maximal runs of text without line breaks. They are derived
from the document on every request and never stored, so a paragraph number
is only meaningful for the request in which it was computed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Sequence

LOGGER = logging.getLogger(__name__)

_PARAGRAPH_PATTERN = re.compile(r"[^\r\n]+")


@dataclass(frozen=True)
class Paragraph:
    index: int
    text: str
    start_index: int
    end_index: int

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "text": self.text,
            "startIndex": self.start_index,
            "endIndex": self.end_index,
        }


def compute_paragraphs(document_text: str) -> List[Paragraph]:
    """Split ``document_text`` into ordered, non-overlapping paragraph spans."""

    text = document_text or ""
    paragraphs: List[Paragraph] = []
    cursor = 0
    for match in _PARAGRAPH_PATTERN.finditer(text):
        start, end = match.span()
        if start < cursor:
            # finditer never goes backwards; keep the index stable if it ever does.
            LOGGER.warning(
                "Paragraph span %s-%s overlaps the previous paragraph ending at %s; skipping.",
                start,
                end,
                cursor,
            )
            continue
        paragraphs.append(
            Paragraph(index=len(paragraphs), text=match.group(0), start_index=start, end_index=end)
        )
        cursor = end
    return paragraphs


def reconstruct_document(document_text: str, paragraphs: Sequence[Paragraph]) -> str:
    """Rebuild the document from ``paragraphs`` and the separator runs between them."""

    text = document_text or ""
    pieces: List[str] = []
    cursor = 0
    for paragraph in paragraphs:
        pieces.append(text[cursor:paragraph.start_index])
        pieces.append(paragraph.text)
        cursor = paragraph.end_index
    pieces.append(text[cursor:])
    return "".join(pieces)


def select_paragraphs(paragraphs: Sequence[Paragraph], indices: Iterable[object]) -> List[Paragraph]:
    """Return the paragraphs named by ``indices`` in document order.

    Indices that are not integers or fall outside the index are logged and
    ignored.
    """

    wanted = set()
    for raw in indices or ():
        if isinstance(raw, bool) or not isinstance(raw, int):
            LOGGER.warning("Ignoring non-integer paragraph selection: %r", raw)
            continue
        if not 0 <= raw < len(paragraphs):
            LOGGER.warning(
                "Ignoring paragraph selection %s; the document has %s paragraphs.",
                raw,
                len(paragraphs),
            )
            continue
        wanted.add(raw)
    return [paragraphs[index] for index in sorted(wanted)]
