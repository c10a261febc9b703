"""Group name normalization for exact and near duplicate matching."""

import re

# Suffixes people append when cloning a group by hand.
DUPLICATE_KEYWORDS = ("duplicate", "backup", "clone", "copy", "test", "dup")

_KEYWORDS = "|".join(DUPLICATE_KEYWORDS)

# Ordered (pattern, replacement) rules. More specific patterns come first so
# looser ones don't eat part of a suffix they would leave half-stripped.
SUFFIX_RULES: list[tuple[re.Pattern, str]] = [
    # "finance2" -> "finance"
    (re.compile(r"([^\W\d_])\d{1,3}$"), r"\1"),
    # "finance (1)"
    (re.compile(r"\s*\(\s*\d+\s*\)$"), ""),
    # "finance [1]"
    (re.compile(r"\s*\[\s*\d+\s*\]$"), ""),
    # "finance 1"
    (re.compile(r"\s+\d+$"), ""),
    # "finance - 1"
    (re.compile(r"\s*-\s*\d+$"), ""),
    # "finance (copy)", "finance [backup 2]", "finance copy2"
    (re.compile(rf"\s*[\(\[]?\s*\b(?:{_KEYWORDS})\s*\d*\s*[\)\]]?$"), ""),
    # "finance copy"
    (re.compile(rf"\s+(?:{_KEYWORDS})$"), ""),
    # "finance copy 2"
    (re.compile(rf"\s+(?:{_KEYWORDS})\s*\d+$"), ""),
]

MAX_PASSES = 25

_SEPARATORS_RE = re.compile(r"[_\-]+")
_WHITESPACE_RE = re.compile(r"\s+")


def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize(name: str | None) -> str:
    """Exact-match key: trimmed and lowercased."""
    if not name:
        return ""
    return name.strip().lower()


def strip_suffixes_once(text: str) -> str:
    """Apply every suffix rule once, in order."""
    for pattern, replacement in SUFFIX_RULES:
        text = pattern.sub(replacement, text)
    return _collapse(text)


def canonicalize(name: str | None, max_passes: int = MAX_PASSES) -> str:
    """
    Fuzzy-match key for a group name.

    Lowercases, turns underscore/hyphen runs into spaces, collapses
    whitespace, then strips duplicate-marker suffixes until nothing changes
    or max_passes is reached. Compound suffixes such as "Finance (copy 1)"
    or "Finance_copy_2" need more than one pass.

    Returns:
        The canonical key. An empty string means the name was nothing but
        markers and must not be grouped.
    """
    if not name:
        return ""

    text = _SEPARATORS_RE.sub(" ", name.strip().lower())
    text = _collapse(text)

    for _ in range(max_passes):
        stripped = strip_suffixes_once(text)
        if stripped == text:
            break
        text = stripped

    return text
