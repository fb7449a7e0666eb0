"""
Specification Builder
=====================
Combines a SurveyCatalogue and a PreregistrationSpec into the AnalysisSpec
handed to the R-template renderer and the mapping-resolution screen.

Steps:
1. Map the sorted union of DV / IV / control names onto the catalogue
2. Build the data contract (columns, labels, exclusions, missingness,
   derived variables incl. automatic counterbalance merges)
3. Rewrite every model in catalogue columns; unmapped names become
   ``TODO_<name>`` placeholders listed in ``unresolved_variables``
4. Add robustness variants, default outputs and template bindings
5. Collect warnings

The builder is a pure function of its inputs; saved manual resolutions are
reapplied afterwards (see mapping_overrides).
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .config import ReconcileConfig, get_config
from .prereg_extractor import (
    ROBUSTNESS_WITH_WITHOUT_CONTROLS,
    AnalysisModel,
    DerivedScale,
    PreregistrationSpec,
)
from .qsf_parser import SurveyCatalogue
from .variable_mapper import (
    MappingResult,
    WarningItem,
    counterbalance_warning,
    find_counterbalance_pair,
    map_variables,
    unresolved_warning,
)

logger = logging.getLogger(__name__)

DATA_SOURCE = "qualtrics_csv"
MODEL_FAMILY = "gaussian"
COUNTERBALANCE_MERGE = "counterbalance_merge"
TODO_PREFIX = "TODO_"
WARN_NO_MAIN_MODELS = "NO_MAIN_MODELS"

DEFAULT_TEMPLATE_SET = "apa_v1"
DEFAULT_STYLE_PROFILE = "apa_flextable_ggpubr"

DEFAULT_ID_COLUMNS = {
    "response_id": "ResponseId",
    "participant_id": "participant_id",
}
DEFAULT_TABLES = ["descriptives", "balance_checks", "model_summary"]
DEFAULT_FIGURES = ["histograms", "box_by_condition", "coefplots"]
DEFAULT_PATHS = {
    "data_raw": "05_data/raw/data.csv",
    "data_clean": "05_data/clean/data_clean.csv",
    "tables_dir": "07_outputs/tables",
    "figures_dir": "07_outputs/figures",
}
DEFAULT_R_PACKAGES = [
    "tidyverse", "janitor", "broom", "flextable", "officer", "ggpubr", "modelsummary",
]

_NON_ALNUM_RUN_RE = re.compile(r"[^a-z0-9]+")


@dataclass
class InputRef:
    path: str
    sha256: str

    def to_dict(self) -> Dict[str, Any]:
        return {'path': self.path, 'sha256': self.sha256}


@dataclass
class ExclusionSpec:
    id: str
    criterion: str
    r_filter: str

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'criterion': self.criterion, 'rFilter': self.r_filter}


@dataclass
class DerivedVariable:
    name: str
    derived_type: str
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
class DataContract:
    source: str
    id_columns: Dict[str, str]
    expected_columns: List[str]
    label_map: Dict[str, str]
    exclusions: List[ExclusionSpec] = field(default_factory=list)
    missingness: Optional[str] = None
    derived_variables: List[DerivedVariable] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source,
            'idColumns': dict(self.id_columns),
            'expectedColumns': list(self.expected_columns),
            'labelMap': dict(self.label_map),
            'exclusions': [e.to_dict() for e in self.exclusions],
            'missingness': self.missingness,
            'derivedVariables': [d.to_dict() for d in self.derived_variables],
        }


@dataclass
class ModelSpec:
    """A model expressed in catalogue columns."""
    id: str
    dv: str
    iv: List[str] = field(default_factory=list)
    controls: List[str] = field(default_factory=list)
    interactions: List[str] = field(default_factory=list)
    formula: str = ""
    family: str = MODEL_FAMILY
    unresolved_variables: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'family': self.family,
            'dv': self.dv,
            'iv': list(self.iv),
            'controls': list(self.controls),
            'interactions': list(self.interactions),
            'formula': self.formula,
            'unresolvedVariables': list(self.unresolved_variables),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelSpec":
        return cls(
            id=data['id'],
            dv=data['dv'],
            iv=list(data.get('iv', [])),
            controls=list(data.get('controls', [])),
            interactions=list(data.get('interactions', [])),
            formula=data.get('formula', ""),
            family=data.get('family', MODEL_FAMILY),
            unresolved_variables=list(data.get('unresolvedVariables', [])),
        )


@dataclass
class ModelsSpec:
    main: List[ModelSpec] = field(default_factory=list)
    exploratory: List[ModelSpec] = field(default_factory=list)
    robustness: List[ModelSpec] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'main': [m.to_dict() for m in self.main],
            'exploratory': [m.to_dict() for m in self.exploratory],
            'robustness': [m.to_dict() for m in self.robustness],
        }


@dataclass
class TemplateBindings:
    template_set: str
    style_profile: str
    paths: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PATHS))
    packages: List[str] = field(default_factory=lambda: list(DEFAULT_R_PACKAGES))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'templateSet': self.template_set,
            'styleProfile': self.style_profile,
            'paths': dict(self.paths),
            'packages': list(self.packages),
        }


@dataclass
class AnalysisSpec:
    """The reconciled, machine-checkable analysis plan."""
    project_id: str
    study_id: str
    analysis_id: str
    inputs: Dict[str, InputRef]
    data_contract: DataContract
    variable_mappings: List[MappingResult]
    models: ModelsSpec
    outputs: Dict[str, List[str]]
    template_bindings: TemplateBindings
    warnings: List[WarningItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'projectId': self.project_id,
            'studyId': self.study_id,
            'analysisId': self.analysis_id,
            'inputs': {k: v.to_dict() for k, v in self.inputs.items()},
            'dataContract': self.data_contract.to_dict(),
            'variableMappings': [m.to_dict() for m in self.variable_mappings],
            'models': self.models.to_dict(),
            'outputs': {k: list(v) for k, v in self.outputs.items()},
            'templateBindings': self.template_bindings.to_dict(),
            'warnings': [w.to_dict() for w in self.warnings],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisSpec":
        """Read a saved spec back; validate it first with validate_analysis_spec."""
        contract = data['dataContract']
        bindings = data['templateBindings']
        models = data['models']
        return cls(
            project_id=data['projectId'],
            study_id=data['studyId'],
            analysis_id=data['analysisId'],
            inputs={
                k: InputRef(path=v['path'], sha256=v['sha256'])
                for k, v in data['inputs'].items()
            },
            data_contract=DataContract(
                source=contract['source'],
                id_columns=dict(contract['idColumns']),
                expected_columns=list(contract['expectedColumns']),
                label_map=dict(contract['labelMap']),
                exclusions=[
                    ExclusionSpec(id=e['id'], criterion=e['criterion'], r_filter=e['rFilter'])
                    for e in contract['exclusions']
                ],
                missingness=contract.get('missingness'),
                derived_variables=[
                    DerivedVariable(
                        name=d['name'],
                        derived_type=d['derivedType'],
                        depends_on=list(d['dependsOn']),
                        definition=d['definition'],
                    )
                    for d in contract['derivedVariables']
                ],
            ),
            variable_mappings=[MappingResult.from_dict(m) for m in data['variableMappings']],
            models=ModelsSpec(
                main=[ModelSpec.from_dict(m) for m in models['main']],
                exploratory=[ModelSpec.from_dict(m) for m in models['exploratory']],
                robustness=[ModelSpec.from_dict(m) for m in models['robustness']],
            ),
            outputs={k: list(v) for k, v in data['outputs'].items()},
            template_bindings=TemplateBindings(
                template_set=bindings['templateSet'],
                style_profile=bindings['styleProfile'],
                paths=dict(bindings['paths']),
                packages=list(bindings['packages']),
            ),
            warnings=[WarningItem.from_dict(w) for w in data['warnings']],
        )


# ─── Helpers ───────────────────────────────────────────────────────────────

def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sanitize_identifier(value: str) -> str:
    """Lowercase alphanumerics, other runs collapsed to ``_``; never empty."""
    cleaned = _NON_ALNUM_RUN_RE.sub("_", value.lower()).strip("_")
    return cleaned or "unresolved_var"


def build_formula(dv: str, rhs: Sequence[str]) -> str:
    return f"{dv} ~ {' + '.join(rhs)}"


def collect_mappings(
    catalogue: SurveyCatalogue,
    prereg: PreregistrationSpec,
    config: Optional[ReconcileConfig] = None,
) -> List[MappingResult]:
    names = set(prereg.variables.dv) | set(prereg.variables.iv) | set(prereg.variables.controls)
    return map_variables(sorted(names), catalogue, config)


def collect_warnings(
    mappings: Sequence[MappingResult],
    prereg: PreregistrationSpec,
) -> List[WarningItem]:
    warnings: List[WarningItem] = []
    for m in mappings:
        for warning in (unresolved_warning(m), counterbalance_warning(m)):
            if warning is not None:
                warnings.append(warning)
    warnings.extend(WarningItem(code=w, message=w, details={}) for w in prereg.warnings)
    return warnings


def _find_mapping(var: str, mappings: Sequence[MappingResult]) -> Optional[MappingResult]:
    lowered = var.lower()
    return next((m for m in mappings if m.prereg_var.lower() == lowered), None)


def resolved_or_todo(var: str, mappings: Sequence[MappingResult], unresolved: List[str]) -> str:
    mapping = _find_mapping(var, mappings)
    if mapping is not None and mapping.resolved_to is not None:
        return mapping.resolved_to
    unresolved.append(var)
    return f"{TODO_PREFIX}{sanitize_identifier(var)}"


def map_models(models: Sequence[AnalysisModel], mappings: Sequence[MappingResult]) -> List[ModelSpec]:
    out: List[ModelSpec] = []
    for m in models:
        unresolved: List[str] = []
        dv = resolved_or_todo(m.dv, mappings, unresolved)
        iv = [resolved_or_todo(v, mappings, unresolved) for v in m.iv]
        controls = [resolved_or_todo(v, mappings, unresolved) for v in m.controls]
        out.append(ModelSpec(
            id=m.id,
            dv=dv,
            iv=iv,
            controls=controls,
            interactions=list(m.interaction_terms),
            formula=build_formula(dv, iv + controls),
            unresolved_variables=unresolved,
        ))
    return out


def build_robustness_models(
    prereg: PreregistrationSpec,
    mappings: Sequence[MappingResult],
) -> List[ModelSpec]:
    out = map_models(prereg.exploratory_analyses, mappings)
    if ROBUSTNESS_WITH_WITHOUT_CONTROLS not in prereg.robustness_checks:
        return out
    for main in map_models(prereg.main_analyses, mappings):
        out.append(ModelSpec(
            id=f"{main.id}_with_controls",
            dv=main.dv,
            iv=list(main.iv),
            controls=list(main.controls),
            interactions=list(main.interactions),
            formula=main.formula,
            family=main.family,
            unresolved_variables=list(main.unresolved_variables),
        ))
        out.append(ModelSpec(
            id=f"{main.id}_without_controls",
            dv=main.dv,
            iv=list(main.iv),
            controls=[],
            interactions=list(main.interactions),
            formula=build_formula(main.dv, main.iv),
            family=main.family,
            unresolved_variables=list(main.unresolved_variables),
        ))
    return out


def candidate_pair_sources(
    mapping: MappingResult,
    min_score: float,
) -> List[str]:
    """The two sibling columns behind a synthesized mapping, sorted; [] if none."""
    keys = sorted({c.key for c in mapping.candidates if c.score >= min_score})
    pair = find_counterbalance_pair(mapping.prereg_var, keys)
    return list(pair) if pair else []


def build_counterbalance_derived(
    mappings: Sequence[MappingResult],
    catalogue: SurveyCatalogue,
    config: Optional[ReconcileConfig] = None,
) -> List[DerivedVariable]:
    cfg = config or get_config()
    expected = {c.lower() for c in catalogue.expected_columns}
    out: List[DerivedVariable] = []
    for m in mappings:
        if not m.is_synthesized or m.resolved_to.lower() in expected:
            continue
        sources = candidate_pair_sources(m, cfg.merge_candidate_min_score)
        if len(sources) < 2:
            continue
        out.append(DerivedVariable(
            name=m.resolved_to,
            derived_type=COUNTERBALANCE_MERGE,
            depends_on=sources,
            definition="dplyr::coalesce({})".format(", ".join(f"`{s}`" for s in sources)),
        ))
        logger.info("Counterbalance merge: %s <- %s", m.resolved_to, " + ".join(sources))
    return out


def _scale_to_derived(scale: DerivedScale) -> DerivedVariable:
    return DerivedVariable(
        name=scale.name,
        derived_type=scale.derived_type,
        depends_on=list(scale.depends_on),
        definition=scale.definition,
    )


# ─── Entry point ───────────────────────────────────────────────────────────

def build_analysis_spec(
    catalogue: SurveyCatalogue,
    prereg: PreregistrationSpec,
    *,
    project_id: str,
    study_id: str,
    analysis_id: str,
    qsf_path: str = "",
    prereg_path: str = "",
    qsf_bytes: bytes = b"",
    prereg_bytes: bytes = b"",
    template_set: str = DEFAULT_TEMPLATE_SET,
    style_profile: str = DEFAULT_STYLE_PROFILE,
    config: Optional[ReconcileConfig] = None,
) -> AnalysisSpec:
    """Build the AnalysisSpec for one catalogue / preregistration pair."""
    cfg = config or get_config()
    mappings = collect_mappings(catalogue, prereg, cfg)
    warnings = collect_warnings(mappings, prereg)

    data_contract = DataContract(
        source=DATA_SOURCE,
        id_columns=dict(DEFAULT_ID_COLUMNS),
        expected_columns=list(catalogue.expected_columns),
        label_map=dict(catalogue.label_map),
        exclusions=[
            ExclusionSpec(
                id=rule.id,
                criterion=rule.criterion,
                r_filter=f"# TODO: apply exclusion: {rule.criterion}",
            )
            for rule in prereg.exclusion_rules
        ],
        missingness=prereg.missing_data_plan,
        derived_variables=(
            [_scale_to_derived(s) for s in prereg.derived_scales]
            + build_counterbalance_derived(mappings, catalogue, cfg)
        ),
    )

    models = ModelsSpec(
        main=map_models(prereg.main_analyses, mappings),
        exploratory=map_models(prereg.exploratory_analyses, mappings),
        robustness=build_robustness_models(prereg, mappings),
    )
    if not models.main:
        warnings.append(WarningItem(
            code=WARN_NO_MAIN_MODELS,
            message="No main models were extracted from prereg.",
            details={},
        ))

    spec = AnalysisSpec(
        project_id=project_id,
        study_id=study_id,
        analysis_id=analysis_id,
        inputs={
            'qsf': InputRef(path=qsf_path, sha256=sha256_hex(qsf_bytes)),
            'prereg': InputRef(path=prereg_path, sha256=sha256_hex(prereg_bytes)),
        },
        data_contract=data_contract,
        variable_mappings=mappings,
        models=models,
        outputs={'tables': list(DEFAULT_TABLES), 'figures': list(DEFAULT_FIGURES)},
        template_bindings=TemplateBindings(template_set=template_set, style_profile=style_profile),
        warnings=warnings,
    )
    resolved = sum(1 for m in mappings if m.is_resolved)
    logger.info(
        "Built AnalysisSpec %s: %d/%d variables mapped, %d main models, %d warnings",
        analysis_id, resolved, len(mappings), len(models.main), len(warnings),
    )
    return spec
