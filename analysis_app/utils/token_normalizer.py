"""
Token Normalizer
================
Canonicalizes raw variable and column names so that preregistration
vocabulary and survey export tags can be compared.

- ``normalize_token``: lowercase, non-alphanumeric runs become ``_``
- ``canonicalize``: maps near-synonyms ("cond", "group", "arm", "label")
  into a small set of buckets
- ``blended_similarity``: the auditable string score shared by the targeted
  QSF parse and the variable mapper
- ``tokenize_identifiers``: pulls identifier-looking substrings out of prose

All patterns are compiled once at import.
"""

import re
from typing import Dict, List, Set

from rapidfuzz.distance import Levenshtein

SEPARATOR = "_"

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

# ─── Identifier tokenization ───────────────────────────────────────────────
_BACKTICK_RE = re.compile(r"`([A-Za-z][A-Za-z0-9_]*)`")
_SNAKE_RE = re.compile(r"\b[A-Za-z][A-Za-z0-9]*_[A-Za-z0-9_]+\b")
_CAMEL_RE = re.compile(r"\b[a-z]+[A-Z][A-Za-z0-9]*\b")
_QID_RE = re.compile(r"\bQID\d+\b")

# Trailing counterbalance-order suffix: "_a1", "b2", "_A12"
_ORDER_SUFFIX_RE = re.compile(r"(?:_)?[ab]\d+$", re.IGNORECASE)

# ─── Synonym buckets ───────────────────────────────────────────────────────
CANONICAL_BUCKETS: Dict[str, List[str]] = {
    "condition": ["cond", "condition", "group", "assignment", "arm", "label", "lbl"],
    "information": ["info", "information"],
    "control": ["ctrl", "control", "covariate", "covariates"],
    "demographic": ["demo", "demographic", "demographics"],
    "predictor": ["treat", "treatment", "predictor", "iv"],
    "outcome": ["dv", "outcome"],
}

_SYNONYMS: Dict[str, str] = {
    word: bucket
    for bucket, words in CANONICAL_BUCKETS.items()
    for word in words
}

CONTAINS_BOOST = 0.10
PREFIX_BOOST = 0.15
PREFIX_MIN_LENGTH = 3
EDIT_WEIGHT = 0.55
OVERLAP_WEIGHT = 0.45


def normalize_token(value: str) -> str:
    """Lowercase and join alphanumeric words with ``_``.

    Idempotent: ``normalize_token(normalize_token(x)) == normalize_token(x)``.
    """
    if not value:
        return ""
    words = _NON_ALNUM_RE.split(str(value).lower())
    return SEPARATOR.join(w for w in words if w)


def canonical_word(word: str) -> str:
    return _SYNONYMS.get(word, word)


def canonicalize(normalized: str) -> str:
    """Remap every word of a normalized token through the synonym table."""
    return SEPARATOR.join(
        canonical_word(w) for w in normalized.split(SEPARATOR) if w
    )


def _word_set(value: str) -> Set[str]:
    return {w for w in value.split(SEPARATOR) if w}


def token_overlap(a: str, b: str) -> float:
    """Jaccard overlap of the ``_``-delimited word sets."""
    a_set = _word_set(a)
    b_set = _word_set(b)
    if not a_set or not b_set:
        return 0.0
    return len(a_set & b_set) / len(a_set | b_set)


def token_prefix_boost(a: str, b: str) -> float:
    """0.15 when a word of one side (3+ chars) prefixes a word of the other."""
    a_words = [w for w in a.split(SEPARATOR) if w]
    b_words = [w for w in b.split(SEPARATOR) if w]
    for aw in a_words:
        for bw in b_words:
            if (
                len(aw) >= PREFIX_MIN_LENGTH
                and len(bw) >= PREFIX_MIN_LENGTH
                and (aw.startswith(bw) or bw.startswith(aw))
            ):
                return PREFIX_BOOST
    return 0.0


def blended_similarity(c_a: str, c_b: str) -> float:
    """Score two canonical forms in [0, 1].

    0.55 * normalized edit similarity + 0.45 * word Jaccard, plus 0.10 when
    one contains the other and 0.15 for a shared word prefix, clamped to 1.
    """
    edit = Levenshtein.normalized_similarity(c_a, c_b)
    overlap = token_overlap(c_a, c_b)
    contains = CONTAINS_BOOST if (c_a in c_b or c_b in c_a) else 0.0
    prefix = token_prefix_boost(c_a, c_b)
    return min(EDIT_WEIGHT * edit + OVERLAP_WEIGHT * overlap + contains + prefix, 1.0)


def token_match_score(token: str, candidate: str) -> float:
    """Similarity between two already-normalized tokens (targeted parse filter)."""
    if not token or not candidate:
        return 0.0
    c_token = canonicalize(token)
    c_candidate = canonicalize(candidate)
    if c_token == c_candidate:
        return 1.0
    return blended_similarity(c_token, c_candidate)


def strip_order_suffix(value: str) -> str:
    """Drop a trailing counterbalance-order suffix (``_A1``, ``b2``)."""
    return _ORDER_SUFFIX_RE.sub("", value, count=1)


def tokenize_identifiers(text: str) -> List[str]:
    """Identifier-looking substrings: backticked, snake_case, camelCase, QID<n>."""
    found: List[str] = []
    found.extend(m.group(1) for m in _BACKTICK_RE.finditer(text))
    found.extend(m.group(0) for m in _SNAKE_RE.finditer(text))
    found.extend(m.group(0) for m in _CAMEL_RE.finditer(text))
    found.extend(m.group(0) for m in _QID_RE.finditer(text))
    return sorted(set(found))


def similarity(raw: str, alias: str) -> float:
    """Score a raw preregistration name against one catalogue alias.

    1.0 for a case-insensitive exact match, 0.99 when the canonical forms
    agree, otherwise ``blended_similarity`` of the canonical forms.
    """
    if raw.lower() == alias.lower():
        return 1.0
    c_raw = canonicalize(normalize_token(raw))
    c_alias = canonicalize(normalize_token(alias))
    if c_raw == c_alias:
        return 0.99
    return blended_similarity(c_raw, c_alias)
