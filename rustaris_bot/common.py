from __future__ import annotations

import contextlib
import re
from pathlib import Path


_CJK_RE = re.compile(r"[぀-ヿ㐀-䶿一-鿿가-힯]")
_WORD_RE = re.compile(r"[^\W_]+", flags=re.UNICODE)


def collapse_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]
    return (text[: limit - 3].rstrip() + "...").strip()


def tokenize(text: str) -> set[str]:
    """Casefolded search terms: latin/cyrillic words plus single CJK characters."""
    terms: set[str] = set()
    for word in _WORD_RE.findall((text or "").casefold()):
        if _CJK_RE.search(word):
            # CJK text carries no spaces, so each ideograph is its own term.
            for piece in _CJK_RE.split(word):
                if piece:
                    terms.add(piece)
            terms.update(_CJK_RE.findall(word))
        else:
            terms.add(word)
    return terms


def as_int(value: object, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        with contextlib.suppress(ValueError):
            return int(value.strip())
    return default


def read_text_with_fallback(path: Path) -> str:
    last_exc: Exception | None = None
    for encoding in ("utf-8-sig", "utf-8", "gb18030"):
        try:
            return path.read_text(encoding=encoding)
        except UnicodeDecodeError as exc:
            last_exc = exc
    if last_exc is not None:
        raise last_exc
    raise RuntimeError(f"Failed to read file: {path}")
