"""
Variable Mapper
===============
Matches each preregistration variable to a column of the survey export.

Every question is scored through its aliases (export tag, QID, question
text) and every embedded-data field through its name; the best alias score
is kept per column. A mapping resolves when:

- a column matches exactly (case-insensitive), or
- two counterbalanced sibling columns (``income_label_A1`` /
  ``income_label_B2``) both match closely, in which case the mapping points
  at the preregistration name itself and the builder derives it by merging
  the pair, or
- the best column clears ``resolve_threshold``.

Unresolved mappings still carry ranked candidates so the resolution screen
always has something to suggest.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import ReconcileConfig, get_config
from .qsf_parser import SurveyCatalogue
from .token_normalizer import canonicalize, normalize_token, similarity, strip_order_suffix

logger = logging.getLogger(__name__)

WARN_UNRESOLVED = "UNRESOLVED_VARIABLE"
WARN_COUNTERBALANCE_AMBIGUOUS = "COUNTERBALANCE_AMBIGUOUS"

# Wider than the a/b order suffix: used only to count sibling variants
_ANY_VARIANT_SUFFIX_RE = re.compile(r"(?:_)?([a-z])\d+$", re.IGNORECASE)


@dataclass
class MappingCandidate:
    key: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {'key': self.key, 'score': self.score}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MappingCandidate":
        return cls(key=str(data.get('key', '')), score=float(data.get('score', 0.0)))


@dataclass
class MappingResult:
    """Outcome of mapping one preregistration variable."""
    prereg_var: str
    resolved_to: Optional[str] = None
    candidates: List[MappingCandidate] = field(default_factory=list)
    # Three or more sibling columns found; left unresolved for the user
    ambiguous_variants: List[str] = field(default_factory=list)

    @property
    def is_resolved(self) -> bool:
        return self.resolved_to is not None

    @property
    def is_synthesized(self) -> bool:
        """Resolved to its own name: must be derived, not read 1:1."""
        return (
            self.resolved_to is not None
            and self.resolved_to.lower() == self.prereg_var.lower()
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'preregVar': self.prereg_var,
            'resolvedTo': self.resolved_to,
            'candidates': [c.to_dict() for c in self.candidates],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MappingResult":
        resolved = data.get('resolvedTo')
        return cls(
            prereg_var=str(data.get('preregVar', '')),
            resolved_to=resolved if isinstance(resolved, str) and resolved else None,
            candidates=[
                MappingCandidate.from_dict(c)
                for c in data.get('candidates') or []
                if isinstance(c, dict)
            ],
        )


@dataclass
class WarningItem:
    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {'code': self.code, 'message': self.message, 'details': dict(self.details)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WarningItem":
        details = data.get('details')
        return cls(
            code=str(data.get('code', '')),
            message=str(data.get('message', '')),
            details=dict(details) if isinstance(details, dict) else {},
        )


# ─── Scoring ───────────────────────────────────────────────────────────────

def best_alias_score(prereg_var: str, aliases: Sequence[str]) -> Tuple[float, bool]:
    """Best score over non-blank aliases, and whether any alias matched exactly."""
    best = 0.0
    exact = False
    for alias in aliases:
        if not alias or not alias.strip():
            continue
        if alias.lower() == prereg_var.lower():
            exact = True
        score = similarity(prereg_var, alias)
        if score > best:
            best = score
    return best, exact


def score_columns(prereg_var: str, catalogue: SurveyCatalogue) -> List[Tuple[MappingCandidate, bool]]:
    """All catalogue columns scored against ``prereg_var``, best first (stable)."""
    scored: Dict[str, List[Any]] = {}
    order: List[str] = []

    def _record(key: str, aliases: Sequence[str]) -> None:
        score, exact = best_alias_score(prereg_var, aliases)
        if key in scored:
            entry = scored[key]
            entry[0] = max(entry[0], score)
            entry[1] = entry[1] or exact
        else:
            scored[key] = [score, exact]
            order.append(key)

    for q in catalogue.questions:
        _record(q.export_tag, q.aliases)
    for name in catalogue.embedded_data:
        _record(name, [name])

    ranked = [(MappingCandidate(key=k, score=scored[k][0]), scored[k][1]) for k in order]
    ranked.sort(key=lambda pair: pair[0].score, reverse=True)
    return ranked


# ─── Counterbalance detection ──────────────────────────────────────────────

def _base_related(base: str, prereg_norm: str) -> bool:
    if not base or not prereg_norm:
        return False
    if base == prereg_norm or prereg_norm in base or base in prereg_norm:
        return True
    c_base = canonicalize(base)
    c_prereg = canonicalize(prereg_norm)
    return c_base == c_prereg or c_prereg in c_base or c_base in c_prereg


def counterbalance_base(key: str) -> str:
    return strip_order_suffix(normalize_token(key))


def find_counterbalance_pair(
    prereg_var: str,
    keys: Sequence[str],
    scores: Optional[Sequence[float]] = None,
    tolerance: Optional[float] = None,
) -> Optional[Tuple[str, str]]:
    """
    First pair of keys that reduce to the same order-stripped base related to
    ``prereg_var``. When ``scores`` is given the pair's scores must also be
    within ``tolerance`` of each other.
    """
    prereg_norm = normalize_token(prereg_var)
    for i in range(len(keys)):
        for j in range(i + 1, len(keys)):
            if scores is not None and tolerance is not None:
                if abs(scores[i] - scores[j]) > tolerance:
                    continue
            a_base = counterbalance_base(keys[i])
            b_base = counterbalance_base(keys[j])
            if not a_base or a_base != b_base:
                continue
            if _base_related(a_base, prereg_norm):
                return keys[i], keys[j]
    return None


def sibling_variants(base: str, keys: Sequence[str]) -> List[str]:
    """
    Keys that share ``base`` and whose suffix letters run on from ``a``
    (``_A1``, ``_B2``, ``_C3``, ...), sorted. A suffix outside that run,
    such as a wave marker ``_t1``, is not an order variant.
    """
    by_letter: Dict[str, List[str]] = {}
    for key in keys:
        normalized = normalize_token(key)
        match = _ANY_VARIANT_SUFFIX_RE.search(normalized)
        if match is None or normalized[:match.start()] != base:
            continue
        by_letter.setdefault(match.group(1).lower(), []).append(key)

    variants: List[str] = []
    letter = "a"
    while letter in by_letter:
        variants.extend(by_letter[letter])
        letter = chr(ord(letter) + 1)
    return sorted(set(variants))


# ─── Mapping ───────────────────────────────────────────────────────────────

def map_variable(
    prereg_var: str,
    catalogue: SurveyCatalogue,
    config: Optional[ReconcileConfig] = None,
) -> MappingResult:
    """Map one preregistration variable onto the catalogue."""
    cfg = config or get_config()
    ranked = score_columns(prereg_var, catalogue)
    all_candidates = [c for c, _ in ranked]

    resolved: Optional[str] = None
    ambiguous: List[str] = []

    exact = next((c for c, is_exact in ranked if is_exact), None)
    if exact is not None:
        resolved = exact.key
    else:
        top = [c for c in all_candidates if c.score >= cfg.candidate_min_score][:cfg.counterbalance_window]
        pair = None
        if len(top) >= 2:
            pair = find_counterbalance_pair(
                prereg_var,
                [c.key for c in top],
                [c.score for c in top],
                cfg.counterbalance_tolerance,
            )
        if pair is not None:
            pair_score = next(c.score for c in top if c.key == pair[0])
            pool = [
                c.key for c in all_candidates
                if (c in top or c.score >= cfg.merge_candidate_min_score)
                and abs(c.score - pair_score) <= cfg.counterbalance_tolerance
            ]
            variants = sibling_variants(counterbalance_base(pair[0]), pool)
            if len(variants) > 2:
                ambiguous = variants
                logger.warning(
                    "'%s' matches %d counterbalanced variants (%s); leaving unresolved",
                    prereg_var, len(variants), ", ".join(variants),
                )
            else:
                resolved = prereg_var
                logger.debug("'%s' resolved as counterbalance pair %s / %s", prereg_var, *pair)
        elif all_candidates and all_candidates[0].score >= cfg.resolve_threshold:
            resolved = all_candidates[0].key

    candidates = [c for c in all_candidates if c.score >= cfg.candidate_min_score]
    if not candidates and all_candidates:
        candidates = [all_candidates[0]]

    result = MappingResult(
        prereg_var=prereg_var,
        resolved_to=resolved,
        candidates=candidates[:cfg.max_candidates],
        ambiguous_variants=ambiguous,
    )
    logger.debug(
        "Mapped '%s' -> %s (%d candidates)",
        prereg_var, result.resolved_to, len(result.candidates),
    )
    return result


def map_variables(
    prereg_vars: Sequence[str],
    catalogue: SurveyCatalogue,
    config: Optional[ReconcileConfig] = None,
) -> List[MappingResult]:
    return [map_variable(v, catalogue, config) for v in prereg_vars]


def unresolved_warning(mapping: MappingResult) -> Optional[WarningItem]:
    if mapping.resolved_to is not None:
        return None
    return WarningItem(
        code=WARN_UNRESOLVED,
        message=f"Unable to map prereg variable '{mapping.prereg_var}' to QSF column.",
        details={
            'preregVar': mapping.prereg_var,
            'candidates': [c.to_dict() for c in mapping.candidates],
        },
    )


def counterbalance_warning(mapping: MappingResult) -> Optional[WarningItem]:
    if not mapping.ambiguous_variants:
        return None
    return WarningItem(
        code=WARN_COUNTERBALANCE_AMBIGUOUS,
        message=(
            f"Prereg variable '{mapping.prereg_var}' matches "
            f"{len(mapping.ambiguous_variants)} counterbalanced columns; choose how to merge them."
        ),
        details={
            'preregVar': mapping.prereg_var,
            'columns': list(mapping.ambiguous_variants),
        },
    )
