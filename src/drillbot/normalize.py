from __future__ import annotations
import re
import unicodedata

_QUOTE_MAP = {
    "’": "'",
    "‘": "'",
    "“": "\"",
    "”": "\"",
}

def _nfkc_normalize(s: str) -> str:
    if not s:
        return ""
    s = unicodedata.normalize("NFKC", s)
    for src, dst in _QUOTE_MAP.items():
        s = s.replace(src, dst)
    return s

def norm_text(s: str) -> str:
    s = _nfkc_normalize(s or "")
    s = s.strip()
    s = re.sub(r"\s+", " ", s)
    return s

def norm_answer_text(s: str) -> str:
    s = _nfkc_normalize(s or "")
    s = s.strip()
    s = re.sub(r"\s+", " ", s)
    while s and s[-1] in ".!?,":
        s = s[:-1]
    s = s.strip()
    s = re.sub(r"\s+", " ", s)
    return s

def norm_cmp_text(s: str) -> str:
    # case-insensitive exact comparison key; no fuzzy matching
    return norm_answer_text(s).casefold()

def norm_transcript(s: str) -> str:
    s = _nfkc_normalize(s or "").lower()
    s = re.sub(r"[^a-z0-9\s-]", "", s)
    return s.strip()

def parse_int_literal(s: str) -> int | None:
    cleaned = norm_answer_text(s).replace(" ", "")
    if re.fullmatch(r"[-+]?\d+", cleaned):
        return int(cleaned)
    return None
