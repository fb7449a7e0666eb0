"""
Preregistration Extractor - Heuristic Parser for Planned Analyses
==================================================================
Turns unstructured preregistration text (AsPredicted answers, OSF templates,
markdown notes, text pulled out of a DOCX) into a structured
PreregistrationSpec that the variable mapper and spec builder consume.

This module handles:
- Declared variable sets (DV / IV / controls / moderators / mediators) from
  marker lines, heading blocks and, as a last resort, concept phrases
- Model formulas (``y ~ a + b x c``) and "regress Y on X" prose
- Exclusion rules, derived scales, robustness flags, missing-data plans

Extraction never fails on odd input. Anything it cannot pin down becomes a
warning on the returned spec (VARIABLES_UNCLEAR_IN_PREREG,
NO_MAIN_ANALYSIS_EXTRACTED) so the caller can ask the user.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .token_normalizer import tokenize_identifiers

logger = logging.getLogger(__name__)

WARN_VARIABLES_UNCLEAR = "VARIABLES_UNCLEAR_IN_PREREG"
WARN_NO_MAIN_ANALYSIS = "NO_MAIN_ANALYSIS_EXTRACTED"

ROBUSTNESS_WITH_WITHOUT_CONTROLS = "with_without_controls"
ROBUSTNESS_SENSITIVITY = "sensitivity_checks"

SCALE_DEFINITION_TEMPLATE = "rowMeans(cbind(/* items for {name} */), na.rm = TRUE)"

# ─── Word lists ────────────────────────────────────────────────────────────
CONCEPT_STOPWORDS = frozenset({
    "a", "an", "the", "of", "for", "to", "in", "on", "at", "by", "and", "or",
    "is", "are", "be", "being", "been", "that", "this", "these", "those",
    "our", "their", "participant", "participants", "self", "reported",
    "measure", "measured", "item", "items", "question", "questions",
    "respond", "response", "responses", "asked", "ask", "student", "students",
    "advisee", "advisors", "advisor", "company", "offer", "offers", "option",
    "options", "using", "will", "would", "should", "can", "could", "anything",
    "after", "before", "during", "between", "then", "than", "where", "which",
    "what", "when", "with", "without", "include", "excluding", "exclude",
    "remove", "drop", "control", "controls", "covariate", "covariates",
    "outcome", "outcomes", "analysis", "variable", "variables",
})

# Single-word concepts worth keeping; anything else alone is generic prose
ALLOWED_SINGLE_CONCEPTS = frozenset({
    "age", "gender", "race", "education", "income", "condition",
    "demographics", "bot_score", "duration",
})

CONTROL_HINTS = ("control", "covariat", "demograph")

# ─── Patterns compiled once ────────────────────────────────────────────────
_BACKTICK_RE = re.compile(r"`([A-Za-z][A-Za-z0-9_]*)`")
_QID_ONLY_RE = re.compile(r"^QID\d+$")
_CAMEL_ONLY_RE = re.compile(r"^[a-z]+[A-Z][A-Za-z0-9]*$")
_WORD_ONLY_RE = re.compile(r"^[A-Za-z][A-Za-z0-9]{2,}$")
_IDENTIFIER_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_.]*$")
_HEADING_RE = re.compile(r"^\s*(?:\d+\)\s*.*|#+\s+.*|[A-Za-z][A-Za-z \t]{0,60}:)\s*$")
_TITLE_RE = re.compile(r"(?im)^\s*(?:#\s+(.+?)|title\s*:\s*(.+?))\s*$")

_FORMULA_RE = re.compile(r"([A-Za-z][A-Za-z0-9_]*)\s*~\s*([^\n\r]+)")
_REGRESS_RE = re.compile(
    r"(?im)(?:regress|predict|model)\s+([A-Za-z][A-Za-z0-9_ ]{1,80})\s+"
    r"(?:on|from|using)\s+([A-Za-z][A-Za-z0-9_, +*:\- ]{1,200})"
)
_COEFFICIENT_RE = re.compile(r"(?i)\b(?:b|beta)\d*\b")
_LEADING_PRODUCT_RE = re.compile(r"(?i)^(?:x|\*|×)\s+")
_INTERACTION_SPLIT_RE = re.compile(r"(?i)\s+x\s+|\s*[*:×]\s*")
_PROSE_LIST_RE = re.compile(r"(?i),|\band\b")

_EXCLUSION_RE = re.compile(r"(?im)\b(exclude|remove|drop)\s+([^\n\.]+)")
_SCALE_ITEMS_RE = re.compile(r"(?im)(\d+)-item\s+([A-Za-z][A-Za-z0-9_]*)")
_SCALE_PAREN_RE = re.compile(
    r"(?im)([A-Za-z][A-Za-z0-9 \-]{3,80})\s*\("
    r"(four|five|six|seven|eight|nine|ten|\d+)\s+items?\)"
)
_MISSING_PLAN_RE = re.compile(r"(?im)(missing data|missingness)\s*[:\-]\s*([^\n]+)")


# ─── Data model ────────────────────────────────────────────────────────────

def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if isinstance(v, (str, int, float))]


@dataclass
class PreregMetadata:
    title: Optional[str] = None
    date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'title': self.title, 'date': self.date}


@dataclass
class VariableSets:
    """Declared variables by role; each list deduplicated, first-seen order."""
    dv: List[str] = field(default_factory=list)
    iv: List[str] = field(default_factory=list)
    controls: List[str] = field(default_factory=list)
    moderators: List[str] = field(default_factory=list)
    mediators: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'dv': list(self.dv),
            'iv': list(self.iv),
            'controls': list(self.controls),
            'moderators': list(self.moderators),
            'mediators': list(self.mediators),
        }


@dataclass
class AnalysisModel:
    """A planned model as written in the preregistration."""
    id: str
    dv: str
    iv: List[str] = field(default_factory=list)
    controls: List[str] = field(default_factory=list)
    interaction_terms: List[str] = field(default_factory=list)
    formula: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'dv': self.dv,
            'iv': list(self.iv),
            'controls': list(self.controls),
            'interactionTerms': list(self.interaction_terms),
            'formula': self.formula,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["AnalysisModel"]:
        """Build from the camelCase form; None when id or dv is missing."""
        model_id = data.get('id')
        dv = data.get('dv')
        if not isinstance(model_id, str) or not isinstance(dv, str):
            return None
        formula = data.get('formula')
        return cls(
            id=model_id,
            dv=dv,
            iv=_str_list(data.get('iv')),
            controls=_str_list(data.get('controls')),
            interaction_terms=_str_list(data.get('interactionTerms')),
            formula=formula if isinstance(formula, str) else None,
        )


@dataclass
class ExclusionRule:
    id: str
    criterion: str
    rule_type: str = "filter"
    variable: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'ruleType': self.rule_type,
            'variable': self.variable,
            'criterion': self.criterion,
        }


@dataclass
class DerivedScale:
    name: str
    derived_type: str = "scale"
    depends_on: List[str] = field(default_factory=list)
    definition: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'derivedType': self.derived_type,
            'dependsOn': list(self.depends_on),
            'definition': self.definition,
        }


@dataclass
class PreregistrationSpec:
    """Everything extracted from one preregistration document."""
    metadata: PreregMetadata = field(default_factory=PreregMetadata)
    variables: VariableSets = field(default_factory=VariableSets)
    main_analyses: List[AnalysisModel] = field(default_factory=list)
    exploratory_analyses: List[AnalysisModel] = field(default_factory=list)
    robustness_checks: List[str] = field(default_factory=list)
    exclusion_rules: List[ExclusionRule] = field(default_factory=list)
    derived_scales: List[DerivedScale] = field(default_factory=list)
    missing_data_plan: Optional[str] = None
    sections: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'metadata': self.metadata.to_dict(),
            'variables': self.variables.to_dict(),
            'mainAnalyses': [m.to_dict() for m in self.main_analyses],
            'exploratoryAnalyses': [m.to_dict() for m in self.exploratory_analyses],
            'robustnessChecks': list(self.robustness_checks),
            'exclusionRules': [e.to_dict() for e in self.exclusion_rules],
            'derivedScales': [d.to_dict() for d in self.derived_scales],
            'missingDataPlan': self.missing_data_plan,
            'sections': dict(self.sections),
            'warnings': list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PreregistrationSpec":
        """Load the structured (camelCase) JSON form. Unknown keys are ignored."""
        metadata = data.get('metadata') or {}
        variables = data.get('variables') or {}

        def _models(key: str) -> List[AnalysisModel]:
            items = data.get(key) or []
            models = [AnalysisModel.from_dict(m) for m in items if isinstance(m, dict)]
            return [m for m in models if m is not None]

        exclusions = []
        for i, rule in enumerate(data.get('exclusionRules') or [], 1):
            if not isinstance(rule, dict) or not isinstance(rule.get('criterion'), str):
                continue
            exclusions.append(ExclusionRule(
                id=str(rule.get('id') or f"exclusion_{i}"),
                criterion=rule['criterion'],
                rule_type=str(rule.get('ruleType') or "filter"),
                variable=rule.get('variable') if isinstance(rule.get('variable'), str) else None,
            ))

        scales = []
        for scale in data.get('derivedScales') or []:
            if not isinstance(scale, dict) or not isinstance(scale.get('name'), str):
                continue
            scales.append(DerivedScale(
                name=scale['name'],
                derived_type=str(scale.get('derivedType') or "scale"),
                depends_on=_str_list(scale.get('dependsOn')),
                definition=str(scale.get('definition') or ""),
            ))

        plan = data.get('missingDataPlan')
        sections = data.get('sections') or {}
        return cls(
            metadata=PreregMetadata(
                title=metadata.get('title') if isinstance(metadata.get('title'), str) else None,
                date=metadata.get('date') if isinstance(metadata.get('date'), str) else None,
            ),
            variables=VariableSets(
                dv=_str_list(variables.get('dv')),
                iv=_str_list(variables.get('iv')),
                controls=_str_list(variables.get('controls')),
                moderators=_str_list(variables.get('moderators')),
                mediators=_str_list(variables.get('mediators')),
            ),
            main_analyses=_models('mainAnalyses'),
            exploratory_analyses=_models('exploratoryAnalyses'),
            robustness_checks=_str_list(data.get('robustnessChecks')),
            exclusion_rules=exclusions,
            derived_scales=scales,
            missing_data_plan=plan if isinstance(plan, str) else None,
            sections={str(k): str(v) for k, v in sections.items()} if isinstance(sections, dict) else {},
            warnings=_str_list(data.get('warnings')),
        )


# ─── Token helpers ─────────────────────────────────────────────────────────

def is_concept_stopword(word: str) -> bool:
    return word in CONCEPT_STOPWORDS


def plausible_variable_token(token: str) -> bool:
    """Whether a token could be a variable name rather than a prose word."""
    value = token.strip().strip('`')
    if not value:
        return False
    if is_concept_stopword(value.lower()):
        return False
    if _QID_ONLY_RE.match(value):
        return True
    if '_' in value:
        return True
    if _CAMEL_ONLY_RE.match(value):
        return True
    return bool(_WORD_ONLY_RE.match(value)) and len(value) <= 64


def extract_variable_tokens(text: str) -> List[str]:
    return [t for t in tokenize_identifiers(text) if plausible_variable_token(t)]


def normalize_concept_phrase(raw: str) -> str:
    """
    Reduce a free-text phrase to a concept token.

    "the income condition" → "income_condition"; a backticked identifier
    wins outright. A lone word survives only if it is on the allow-list or
    already looks like an identifier (contains ``_``).
    """
    explicit = _BACKTICK_RE.search(raw)
    if explicit:
        return explicit.group(1)

    cleaned = raw
    for ch in '()[]"\'/-':
        cleaned = cleaned.replace(ch, ' ')
    words = []
    for w in cleaned.split():
        w = re.sub(r'^[^A-Za-z0-9]+|[^A-Za-z0-9]+$', '', w).lower()
        if w and not is_concept_stopword(w):
            words.append(w)
    if not words:
        return ""
    if len(words) == 1 and words[0] not in ALLOWED_SINGLE_CONCEPTS and '_' not in words[0]:
        return ""
    return "_".join(words)


def _split_candidates(raw: str) -> List[str]:
    return [s.strip() for s in re.split(r"[,;\n]", raw) if s.strip()]


def _strip_bullet(line: str) -> str:
    return line.strip().lstrip('-').lstrip('*').lstrip('•').strip()


def _append_unique(out: List[str], value: str, case_insensitive: bool = False) -> None:
    if not value:
        return
    if case_insensitive:
        if any(v.lower() == value.lower() for v in out):
            return
    elif value in out:
        return
    out.append(value)


def _sorted_unique(values: Iterable[str]) -> List[str]:
    return sorted(set(values))


class PreregistrationExtractor:
    """
    Heuristic extractor for preregistration documents.

    Marker lists are instance attributes so callers can extend them for house
    templates without subclassing.
    """

    def __init__(self) -> None:
        # Explicit markers: the list after them must name identifiers
        self.explicit_markers: Dict[str, List[str]] = {
            "dv": ["dv", "dependent variable", "dependent variables"],
            "iv": ["iv", "independent variable", "independent variables"],
            "controls": ["controls", "covariates"],
            "moderators": ["moderator", "moderators"],
            "mediators": ["mediator", "mediators"],
        }
        # Concept markers: broader prose, each phrase reduced to a concept
        self.concept_markers: Dict[str, List[str]] = {
            "dv": [
                "dependent variable", "dependent variables",
                "outcome variable", "outcome variables",
                "primary outcome", "primary outcomes",
            ],
            "iv": [
                "independent variable", "independent variables",
                "predictor", "predictors",
                "treatment", "treatment condition",
                "condition", "manipulation",
            ],
            "controls": [
                "control variables", "controls", "covariates", "adjustment variables",
            ],
            "moderators": ["moderator", "moderators", "moderating variable"],
            "mediators": ["mediator", "mediators", "mediating variable"],
        }
        self._inline_cache: Dict[Tuple[str, bool], re.Pattern] = {}
        self._heading_cache: Dict[str, re.Pattern] = {}

    # ─── Marker patterns ──────────────────────────────────────────────────
    def _inline_pattern(self, marker: str, stop_at_period: bool) -> re.Pattern:
        key = (marker, stop_at_period)
        if key not in self._inline_cache:
            tail = r"([^\n\.]+)" if stop_at_period else r"([^\n]+)"
            self._inline_cache[key] = re.compile(
                rf"(?im)(?<![A-Za-z]){re.escape(marker)}(?:\(s\))?\s*[:\-]\s*{tail}"
            )
        return self._inline_cache[key]

    def _heading_pattern(self, marker: str) -> re.Pattern:
        if marker not in self._heading_cache:
            self._heading_cache[marker] = re.compile(
                rf"(?i)^\s*(?:#+\s*)?{re.escape(marker)}(?:\(s\))?\s*:?\s*$"
            )
        return self._heading_cache[marker]

    def _block_lines(self, text: str, marker: str) -> List[str]:
        """Non-empty lines under a standalone marker heading, bullets stripped."""
        heading = self._heading_pattern(marker)
        lines = text.splitlines()
        out: List[str] = []
        i = 0
        while i < len(lines):
            if heading.match(lines[i]):
                i += 1
                while i < len(lines):
                    raw = lines[i].strip()
                    if not raw or _HEADING_RE.match(raw):
                        break
                    out.append(_strip_bullet(raw))
                    i += 1
            else:
                i += 1
        return out

    # ─── Variable sets ────────────────────────────────────────────────────
    def extract_list_after_markers(self, text: str, markers: List[str]) -> List[str]:
        """Identifiers listed after explicit markers, inline or as a block."""
        out: List[str] = []
        for marker in markers:
            for match in self._inline_pattern(marker, stop_at_period=True).finditer(text):
                for item in re.split(r"[,;]", match.group(1)):
                    raw = item.strip()
                    for explicit in _BACKTICK_RE.finditer(raw):
                        token = explicit.group(1)
                        if plausible_variable_token(token):
                            _append_unique(out, token)
                    tokenized = extract_variable_tokens(raw)
                    if tokenized:
                        for token in tokenized:
                            _append_unique(out, token)
                    else:
                        single = raw.strip('`')
                        if plausible_variable_token(single):
                            _append_unique(out, single)

            for line in self._block_lines(text, marker):
                for token in extract_variable_tokens(line):
                    _append_unique(out, token)
        return out

    def extract_concepts_after_markers(self, text: str, markers: List[str]) -> List[str]:
        """Concept tokens from natural-language phrases after broader markers."""
        out: List[str] = []
        for marker in markers:
            for match in self._inline_pattern(marker, stop_at_period=False).finditer(text):
                for item in _split_candidates(match.group(1)):
                    _append_unique(out, normalize_concept_phrase(item), case_insensitive=True)

            for line in self._block_lines(text, marker):
                for item in _split_candidates(line):
                    _append_unique(out, normalize_concept_phrase(item), case_insensitive=True)
        return out

    def extract_variable_set(self, text: str, role: str) -> List[str]:
        found = self.extract_list_after_markers(text, self.explicit_markers[role])
        if not found:
            found = self.extract_concepts_after_markers(text, self.concept_markers[role])
        return found

    # ─── Models ───────────────────────────────────────────────────────────
    def parse_rhs_predictors(self, rhs: str) -> Tuple[List[str], List[str], List[str]]:
        """
        Split a model right-hand side into (iv, controls, interactions).

        Coefficient names (B0, beta2) are noise and dropped. A term joined by
        ``x``, ``*`` or ``:`` is an interaction: each side becomes an IV and
        ``a:b`` is recorded. Terms mentioning controls/covariates/demographics
        are controls.
        """
        cleaned_rhs = _COEFFICIENT_RE.sub("", rhs)
        iv: List[str] = []
        controls: List[str] = []
        interactions: List[str] = []

        for term in cleaned_rhs.split('+'):
            clean = term.strip().strip('`').strip('*:=').strip()
            clean = _LEADING_PRODUCT_RE.sub("", clean).strip()
            if not clean or clean in ("0", "1"):
                continue

            pieces = [p for p in _INTERACTION_SPLIT_RE.split(clean) if p.strip()]
            if len(pieces) >= 2:
                parts = [p for p in (self._term_name(p) for p in pieces) if p]
                if len(parts) >= 2:
                    _append_unique(interactions, ":".join(parts))
                    for part in parts:
                        _append_unique(iv, part)
                    continue

            single = self._term_name(clean)
            if not single:
                continue
            lower = single.lower()
            if any(hint in lower for hint in CONTROL_HINTS):
                _append_unique(controls, single)
            else:
                _append_unique(iv, single)

        return iv, controls, interactions

    @staticmethod
    def _term_name(term: str) -> str:
        """A bare identifier stays as written; prose goes through concept normalization."""
        term = term.strip().strip('`').strip()
        if _IDENTIFIER_RE.match(term):
            return term if (plausible_variable_token(term) or term.lower() in ALLOWED_SINGLE_CONCEPTS) else ""
        return normalize_concept_phrase(term)

    def extract_model_specs(self, text: str) -> List[AnalysisModel]:
        """Formula lines first; "regress Y on X" prose only when none parse."""
        out: List[AnalysisModel] = []
        for match in _FORMULA_RE.finditer(text):
            dv = match.group(1).strip()
            if not plausible_variable_token(dv):
                continue
            rhs = match.group(2).strip()
            iv, controls, interactions = self.parse_rhs_predictors(rhs)
            if not iv:
                continue
            out.append(AnalysisModel(
                id=f"main_{len(out) + 1}",
                dv=dv,
                iv=iv,
                controls=controls,
                interaction_terms=interactions,
                formula=f"{dv} ~ {rhs}",
            ))

        if out:
            return out

        for match in _REGRESS_RE.finditer(text):
            dv_tokens = extract_variable_tokens(match.group(1).strip())
            if not dv_tokens:
                continue
            dv = dv_tokens[0]
            rhs = _PROSE_LIST_RE.sub("+", match.group(2).strip())
            iv, controls, interactions = self.parse_rhs_predictors(rhs)
            if not iv:
                continue
            out.append(AnalysisModel(
                id=f"main_{len(out) + 1}",
                dv=dv,
                iv=iv,
                controls=controls,
                interaction_terms=interactions,
                formula=f"{dv} ~ {' + '.join(iv + controls)}",
            ))
        return out

    # ─── Exclusions, scales, robustness, missing data ─────────────────────
    def extract_exclusions(self, text: str) -> List[ExclusionRule]:
        return [
            ExclusionRule(id=f"exclusion_{i}", criterion=m.group(2).strip())
            for i, m in enumerate(_EXCLUSION_RE.finditer(text), 1)
        ]

    def extract_scales(self, text: str) -> List[DerivedScale]:
        out: List[DerivedScale] = []
        names = set()

        def _add(name: str) -> None:
            scale_name = f"{name}_scale"
            if not name or scale_name in names:
                return
            names.add(scale_name)
            out.append(DerivedScale(
                name=scale_name,
                derived_type="scale",
                definition=SCALE_DEFINITION_TEMPLATE.format(name=name),
            ))

        for m in _SCALE_ITEMS_RE.finditer(text):
            _add(m.group(2))
        for m in _SCALE_PAREN_RE.finditer(text):
            _add(normalize_concept_phrase(m.group(1)))
        return out

    def extract_robustness(self, text: str) -> List[str]:
        out: List[str] = []
        lc = text.lower()
        if "with and without controls" in lc:
            _append_unique(out, ROBUSTNESS_WITH_WITHOUT_CONTROLS)
        if (
            ("without any control variables" in lc and "controlling for participant demographics" in lc)
            or ("without control variables" in lc and "controlling for" in lc)
        ):
            _append_unique(out, ROBUSTNESS_WITH_WITHOUT_CONTROLS)
        if "robust" in lc or "sensitivity" in lc:
            _append_unique(out, ROBUSTNESS_SENSITIVITY)
        return out

    def extract_missing_data_plan(self, text: str) -> Optional[str]:
        match = _MISSING_PLAN_RE.search(text)
        return match.group(2).strip() if match else None

    def extract_title(self, text: str) -> Optional[str]:
        match = _TITLE_RE.search(text)
        if not match:
            return None
        return (match.group(1) or match.group(2) or "").strip() or None

    # ─── Orchestration ────────────────────────────────────────────────────
    def fill(self, spec: PreregistrationSpec, text: str) -> PreregistrationSpec:
        """Populate every still-empty part of ``spec`` from ``text`` (in place)."""
        variables = spec.variables
        for role in ("dv", "iv", "controls", "moderators", "mediators"):
            if not getattr(variables, role):
                setattr(variables, role, self.extract_variable_set(text, role))

        if not variables.dv or not variables.iv:
            spec.warnings.append(WARN_VARIABLES_UNCLEAR)

        models = self.extract_model_specs(text)
        if models:
            spec.main_analyses = models
            if not variables.dv:
                variables.dv = _sorted_unique(m.dv for m in models)
            if not variables.iv:
                variables.iv = _sorted_unique(v for m in models for v in m.iv)
            if not variables.controls:
                variables.controls = _sorted_unique(v for m in models for v in m.controls)
        elif variables.dv and variables.iv:
            spec.main_analyses.append(AnalysisModel(
                id="main_1",
                dv=variables.dv[0],
                iv=list(variables.iv),
                controls=list(variables.controls),
                formula=f"{variables.dv[0]} ~ {' + '.join(variables.iv)}",
            ))

        spec.exclusion_rules = self.extract_exclusions(text)
        spec.derived_scales = self.extract_scales(text)
        spec.robustness_checks = self.extract_robustness(text)
        spec.missing_data_plan = self.extract_missing_data_plan(text)
        if spec.metadata.title is None:
            spec.metadata.title = self.extract_title(text)

        if not spec.main_analyses:
            spec.warnings.append(WARN_NO_MAIN_ANALYSIS)

        logger.info(
            "Prereg extraction: %d DV, %d IV, %d controls, %d main models, %d warnings",
            len(variables.dv), len(variables.iv), len(variables.controls),
            len(spec.main_analyses), len(spec.warnings),
        )
        return spec


_default_extractor = PreregistrationExtractor()


def fill_from_text(spec: PreregistrationSpec, text: str) -> PreregistrationSpec:
    """Fill ``spec`` in place using the default extractor."""
    return _default_extractor.fill(spec, text)


def extract_prereg(text: str) -> PreregistrationSpec:
    """Extract a fresh PreregistrationSpec from plain text."""
    return fill_from_text(PreregistrationSpec(), text)
