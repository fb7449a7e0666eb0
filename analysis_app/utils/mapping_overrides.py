"""
Mapping overrides
=================
Manual resolutions made on the mapping screen must survive regeneration.
Both helpers here work on a freshly built AnalysisSpec and return a new one:

- ``apply_saved_mappings``: carry resolutions over from the previously saved
  spec (diff step after every regeneration)
- ``resolve_mappings``: apply explicit ``{preregVar, resolvedTo}`` updates

After either step, models are re-expressed with the new columns and
warnings about variables that are now mapped are dropped.
"""

import copy
import logging
from typing import Any, Dict, Iterable, Optional

from .errors import ErrorKind, SpecValidationError
from .spec_builder import TODO_PREFIX, AnalysisSpec, ModelSpec, build_formula, sanitize_identifier
from .variable_mapper import WARN_COUNTERBALANCE_AMBIGUOUS, WARN_UNRESOLVED, MappingResult

logger = logging.getLogger(__name__)

_RESOLVABLE_WARNINGS = (WARN_UNRESOLVED, WARN_COUNTERBALANCE_AMBIGUOUS)


def _find(mappings: Iterable[MappingResult], prereg_var: str) -> Optional[MappingResult]:
    lowered = prereg_var.lower()
    return next((m for m in mappings if m.prereg_var.lower() == lowered), None)


def _model_token(mapping: MappingResult) -> str:
    """The name a model currently uses for ``mapping``'s variable."""
    if mapping.resolved_to is not None:
        return mapping.resolved_to
    return f"{TODO_PREFIX}{sanitize_identifier(mapping.prereg_var)}"


def _set_resolution(
    mapping: MappingResult,
    resolved_to: str,
    rewrites: Dict[str, str],
) -> None:
    old = _model_token(mapping)
    mapping.resolved_to = resolved_to
    if old != resolved_to:
        rewrites[old] = resolved_to


def _refresh_model(model: ModelSpec, rewrites: Dict[str, str]) -> None:
    """Re-express a model after its variables were (re)mapped."""
    names = [model.dv] + model.iv + model.controls
    if not any(name in rewrites for name in names):
        return
    model.dv = rewrites.get(model.dv, model.dv)
    model.iv = [rewrites.get(v, v) for v in model.iv]
    model.controls = [rewrites.get(v, v) for v in model.controls]
    model.formula = build_formula(model.dv, model.iv + model.controls)
    model.unresolved_variables = [
        var for var in model.unresolved_variables
        if f"{TODO_PREFIX}{sanitize_identifier(var)}" not in rewrites
    ]


def _settle(spec: AnalysisSpec, rewrites: Dict[str, str]) -> AnalysisSpec:
    if rewrites:
        for group in (spec.models.main, spec.models.exploratory, spec.models.robustness):
            for model in group:
                _refresh_model(model, rewrites)

    resolved_vars = {
        m.prereg_var.lower() for m in spec.variable_mappings if m.resolved_to is not None
    }
    kept = []
    for warning in spec.warnings:
        if warning.code in _RESOLVABLE_WARNINGS:
            var = str(warning.details.get('preregVar', '')).lower()
            if var in resolved_vars:
                continue
        kept.append(warning)
    dropped = len(spec.warnings) - len(kept)
    spec.warnings = kept
    if dropped:
        logger.info("Dropped %d warnings for now-resolved variables", dropped)
    return spec


def apply_saved_mappings(spec: AnalysisSpec, saved: AnalysisSpec) -> AnalysisSpec:
    """Reapply every resolution from ``saved`` onto a copy of ``spec``."""
    result = copy.deepcopy(spec)
    rewrites: Dict[str, str] = {}
    for current in result.variable_mappings:
        previous = _find(saved.variable_mappings, current.prereg_var)
        if previous is not None and previous.resolved_to is not None:
            _set_resolution(current, previous.resolved_to, rewrites)
    logger.info("Carried over %d saved mapping resolutions", len(rewrites))
    return _settle(result, rewrites)


def resolve_mappings(spec: AnalysisSpec, updates: Iterable[Dict[str, Any]]) -> AnalysisSpec:
    """
    Apply manual ``{"preregVar": ..., "resolvedTo": ...}`` updates.

    Unknown variables are appended as new mappings without candidates.
    An update missing either field raises ``SpecValidationError``.
    """
    result = copy.deepcopy(spec)
    rewrites: Dict[str, str] = {}
    for update in updates:
        if not isinstance(update, dict) or not update.get('preregVar') or not update.get('resolvedTo'):
            raise SpecValidationError(
                ErrorKind.SCHEMA_VIOLATION,
                "Mapping update needs non-empty 'preregVar' and 'resolvedTo'",
                {'update': update},
            )
        prereg_var = str(update['preregVar'])
        resolved_to = str(update['resolvedTo'])
        mapping = _find(result.variable_mappings, prereg_var)
        if mapping is not None:
            _set_resolution(mapping, resolved_to, rewrites)
        else:
            result.variable_mappings.append(
                MappingResult(prereg_var=prereg_var, resolved_to=resolved_to)
            )
        logger.debug("Manual mapping %s -> %s", prereg_var, resolved_to)
    return _settle(result, rewrites)
