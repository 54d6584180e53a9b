from __future__ import annotations

import re
from collections import Counter
from typing import List

from duocast_contracts.errors import TooShortError
from duocast_podcast.domain.models import PageText

MIN_WORDS = 100
MAX_INPUT_BYTES = 25 * 1024 * 1024


def fix_hyphenation(text: str) -> str:
    # "tech-\nniques" -> "techniques"
    return re.sub(r"-\s*\n", "", text)


def normalize_whitespace(text: str) -> str:
    text = re.sub(r"[\t\r\f\v]+", " ", text)
    text = re.sub(r"[ ]{2,}", " ", text.replace("\u00a0", " "))
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def clean_text(raw: str) -> str:
    text = fix_hyphenation(raw).replace("\u00ad", "")  # soft hyphen
    return normalize_whitespace(text)


def clean_page_text(raw: str) -> str:
    """Page cleanup for PDF text: also drops table-like lines."""
    lines = []
    for line in clean_text(raw).splitlines():
        stripped = line.strip()
        if "|" in stripped or "____" in stripped:
            continue
        lines.append(stripped)
    return normalize_whitespace("\n".join(lines))


def drop_repeated_headers_footers(pages: List[PageText], *, min_repeats: int = 2) -> List[PageText]:
    """Remove running headers/footers and bare page numbers."""
    if len(pages) < min_repeats:
        return pages

    header_counts: Counter[str] = Counter()
    footer_counts: Counter[str] = Counter()
    split_lines: list[list[str]] = []
    for p in pages:
        lines = [ln.strip() for ln in p.text.splitlines() if ln.strip()]
        split_lines.append(lines)
        if lines:
            header_counts[lines[0]] += 1
            footer_counts[lines[-1]] += 1

    headers = {ln for ln, n in header_counts.items() if n >= min_repeats and len(ln) <= 120}
    footers = {ln for ln, n in footer_counts.items() if n >= min_repeats and len(ln) <= 120}

    cleaned: list[PageText] = []
    for p, lines in zip(pages, split_lines):
        kept = [
            line
            for idx, line in enumerate(lines)
            if not (idx == 0 and line in headers)
            and not (idx == len(lines) - 1 and line in footers)
            and not re.fullmatch(r"(page\s+)?\d{1,4}(\s*/\s*\d{1,4})?", line, flags=re.I)
        ]
        cleaned.append(PageText(page_number=p.page_number, text="\n".join(kept), source=p.source))
    return cleaned


def word_count(text: str) -> int:
    return len(text.split())


def ensure_min_words(text: str, *, minimum: int = MIN_WORDS) -> str:
    count = word_count(text)
    if count < minimum:
        raise TooShortError(f"content too short: {count} words (minimum {minimum})")
    return text
