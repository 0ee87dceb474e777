from __future__ import annotations

from .normalize import norm_cmp_text, norm_text
from .spoken_numbers import parse_spoken_number

def option_label(idx: int) -> str:
    return chr(ord("A") + idx)

def match_option(text: str, options: list[str]) -> str | None:
    key = norm_cmp_text(text)
    if not key:
        return None
    for opt in options:
        if norm_cmp_text(opt) == key:
            return str(opt)
    return None

def resolve_choice(user_input: str, options: list[str], *, allow_labels: bool = True) -> str | None:
    if not options:
        return None
    raw = norm_text(user_input or "")
    if not raw:
        return None

    exact = match_option(raw, options)
    if exact is not None or not allow_labels:
        return exact

    cleaned = raw.strip().rstrip(").")
    if len(cleaned) == 1 and cleaned.isalpha():
        idx = ord(cleaned.upper()) - ord("A")
        if 0 <= idx < len(options):
            return str(options[idx])

    if cleaned.isdigit():
        idx = int(cleaned)
        if 1 <= idx <= len(options):
            return str(options[idx - 1])
    return None

def resolve_spoken_choice(transcript: str, options: list[str]) -> str | None:
    """Match a dictated answer against options; "option b" / "number two" also select."""
    exact = match_option(transcript, options)
    if exact is not None:
        return exact
    words = norm_cmp_text(transcript).split()
    if len(words) == 2 and words[0] in ("option", "answer", "letter"):
        return resolve_choice(words[1], options)
    if len(words) == 2 and words[0] == "number":
        n = parse_spoken_number(words[1])
        if n is not None and 1 <= n <= len(options):
            return str(options[n - 1])
    return None
