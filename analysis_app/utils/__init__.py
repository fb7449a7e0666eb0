# Utils package for the Analysis Specification Builder
"""
Utility modules for the Analysis Specification Builder.

Version: 1.0.0

Reconciles a Qualtrics survey definition (.qsf) with a preregistration into
one machine-checkable AnalysisSpec for the R analysis templates.

Pipeline:
    QSF ──► qsf_parser ──► SurveyCatalogue ─────────┐
                                                     ├──► spec_builder ──► AnalysisSpec
    prereg ──► prereg_loader / prereg_extractor ────┘          │
                                                     variable_mapper

Modules:
    - token_normalizer: name normalization, synonym buckets, similarity score
    - qsf_parser: Parse Qualtrics Survey Format (.qsf) files into a column catalogue
    - prereg_extractor: Heuristic extraction of variables, models, exclusions
    - prereg_loader: Markdown / text / JSON / DOCX preregistration loading
    - variable_mapper: Prereg variable → export column matching, counterbalance pairs
    - spec_builder: AnalysisSpec assembly (data contract, models, warnings)
    - spec_schema: JSON Schemas for AnalysisSpec and structured prereg JSON
    - mapping_overrides: Saved and manual mapping resolutions
    - contract_validator: Response-export checks and derived-variable merges
    - pipeline: End-to-end generate_analysis_spec
    - config: ReconcileConfig thresholds (ANALYSIS_APP_* environment variables)
    - errors: ErrorKind and the AnalysisSpecError family
    - error_logger: JSON log of failed generations
"""

__version__ = "1.0.0"

from .config import ReconcileConfig, get_config, set_config
from .errors import (
    AnalysisSpecError,
    ErrorKind,
    PreregParseError,
    QSFParseError,
    SpecValidationError,
)
from .token_normalizer import (
    canonicalize,
    normalize_token,
    similarity,
    tokenize_identifiers,
)
from .qsf_parser import (
    EmbeddedDataField,
    SurveyCatalogue,
    SurveyChoice,
    SurveyColumn,
    parse_qsf,
    summarize_catalogue,
)
from .prereg_extractor import (
    AnalysisModel,
    DerivedScale,
    ExclusionRule,
    PreregistrationExtractor,
    PreregistrationSpec,
    VariableSets,
    extract_prereg,
    fill_from_text,
)
from .prereg_loader import (
    apply_llm_enrichment,
    build_structured_spec,
    collect_candidate_tokens,
    detect_format,
    parse_prereg,
)
from .variable_mapper import (
    MappingCandidate,
    MappingResult,
    WarningItem,
    map_variable,
    unresolved_warning,
)
from .spec_builder import AnalysisSpec, build_analysis_spec
from .spec_schema import ANALYSIS_SPEC_SCHEMA, PREREG_JSON_SCHEMA, validate_analysis_spec
from .mapping_overrides import apply_saved_mappings, resolve_mappings
from .contract_validator import apply_derived_variables, validate_response_data
from .pipeline import generate_analysis_spec

__all__ = [
    # Configuration and errors
    'ReconcileConfig',
    'get_config',
    'set_config',
    'AnalysisSpecError',
    'ErrorKind',
    'PreregParseError',
    'QSFParseError',
    'SpecValidationError',
    # Token normalizer
    'canonicalize',
    'normalize_token',
    'similarity',
    'tokenize_identifiers',
    # Survey catalogue
    'EmbeddedDataField',
    'SurveyCatalogue',
    'SurveyChoice',
    'SurveyColumn',
    'parse_qsf',
    'summarize_catalogue',
    # Preregistration
    'AnalysisModel',
    'DerivedScale',
    'ExclusionRule',
    'PreregistrationExtractor',
    'PreregistrationSpec',
    'VariableSets',
    'extract_prereg',
    'fill_from_text',
    'apply_llm_enrichment',
    'build_structured_spec',
    'collect_candidate_tokens',
    'detect_format',
    'parse_prereg',
    # Mapping and spec
    'MappingCandidate',
    'MappingResult',
    'WarningItem',
    'map_variable',
    'unresolved_warning',
    'AnalysisSpec',
    'build_analysis_spec',
    'ANALYSIS_SPEC_SCHEMA',
    'PREREG_JSON_SCHEMA',
    'validate_analysis_spec',
    'apply_saved_mappings',
    'resolve_mappings',
    # Data checks and pipeline
    'apply_derived_variables',
    'validate_response_data',
    'generate_analysis_spec',
]
