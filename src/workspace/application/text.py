from __future__ import annotations

from collections.abc import Iterable


def sanitize_text(value: str | None) -> str:
    """Normalize line endings and drop control characters except newline and tab."""
    text = (value or "").strip()
    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    kept = [ch for ch in text if ch in "\n\t" or not (ord(ch) < 0x20 or ord(ch) == 0x7F)]
    return "".join(kept).strip()


def sanitize_list(items: Iterable[str] | None) -> list[str]:
    return [text for text in (sanitize_text(item) for item in items or ()) if text]


def clip(value: str | None, limit: int) -> str:
    text = sanitize_text(value)
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
