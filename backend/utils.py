"""
Utility Functions

Helpers used across the app:
  - new_id(): Opaque unique ids for leads and searches
  - now_ms(): Epoch-millisecond timestamps for saved-search ordering
  - summarize_brief(brief): Cosmetic one-line summary for the dashboard
  - append_document_text(description, path): Attach a text/markdown file to a service description
  - excerpt(text, limit): Single-line truncated preview for logs and errors
"""

import logging
import time
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIXES = {".txt", ".md", ".markdown"}


def new_id() -> str:
    """Return a new opaque unique identifier."""
    return uuid.uuid4().hex


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def summarize_brief(brief) -> str:
    """Build the dashboard summary for a brief.

    Purely cosmetic: never used for identity or lookups.
    """
    return (
        f"{brief.target_audience[:30]} in {brief.target_area[:25]} "
        f"for {brief.service_description[:20]}..."
    )


def append_document_text(description: str, path: Path) -> str:
    """Append a plain-text / markdown document to a service description.

    No parsing beyond decoding: the file content is appended as-is.

    Raises:
        ValueError: if the file type is not plain text or markdown.
    """
    path = Path(path)
    if path.suffix.lower() not in DOCUMENT_SUFFIXES:
        raise ValueError(
            f"Unsupported document type '{path.suffix}'. Use one of: {', '.join(sorted(DOCUMENT_SUFFIXES))}"
        )
    text = path.read_text(encoding="utf-8", errors="replace").strip()
    if not text:
        logger.info("Document %s is empty, nothing appended", path.name)
        return description
    logger.info("Appending %d chars from %s to service description", len(text), path.name)
    return f"{description.rstrip()}\n\n--- Additional context from {path.name} ---\n{text}"


def excerpt(text: str, limit: int = 100) -> str:
    """Single-line preview of ``text``, truncated to ``limit`` chars."""
    flat = (text or "").replace("\n", " ").strip()
    if len(flat) <= limit:
        return flat
    return flat[:limit] + "..."
