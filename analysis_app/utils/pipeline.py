"""
End-to-end spec generation
==========================
``generate_analysis_spec`` runs the whole reconciliation for one analysis:

    prereg bytes ──► PreregistrationSpec ──► candidate tokens
    QSF bytes ─────► SurveyCatalogue (targeted by those tokens)
                         │
                         ▼
                   build_analysis_spec ──► schema check ──► saved-mapping diff

Reading files and persisting the result stay with the caller (see cli.py);
apart from logging the function is pure. With ``parallel=True`` and
explicit candidate tokens both parses run on a thread pool; the result is
identical.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple, Union

from .config import ReconcileConfig, get_config
from .prereg_extractor import PreregistrationSpec
from .prereg_loader import FORMAT_MARKDOWN, apply_llm_enrichment, collect_candidate_tokens, parse_prereg
from .mapping_overrides import apply_saved_mappings
from .qsf_parser import SurveyCatalogue, parse_qsf
from .spec_builder import DEFAULT_STYLE_PROFILE, DEFAULT_TEMPLATE_SET, AnalysisSpec, build_analysis_spec
from .spec_schema import validate_analysis_spec

logger = logging.getLogger(__name__)


def _parse_inputs_parallel(
    qsf_bytes: bytes,
    prereg_bytes: bytes,
    prereg_format: str,
    candidate_tokens: List[str],
    cfg: ReconcileConfig,
) -> Tuple[PreregistrationSpec, SurveyCatalogue]:
    """Explicit tokens let both parses start at once."""
    with ThreadPoolExecutor(max_workers=2) as pool:
        prereg_future = pool.submit(parse_prereg, prereg_bytes, prereg_format)
        catalogue_future = pool.submit(parse_qsf, qsf_bytes, candidate_tokens, cfg)
        return prereg_future.result(), catalogue_future.result()


def generate_analysis_spec(
    qsf_bytes: bytes,
    prereg_bytes: bytes,
    *,
    project_id: str,
    study_id: str,
    analysis_id: str,
    qsf_path: str = "",
    prereg_path: str = "",
    prereg_format: str = FORMAT_MARKDOWN,
    candidate_tokens: Optional[List[str]] = None,
    enrichment: Union[str, Dict[str, Any], None] = None,
    previous_spec: Optional[AnalysisSpec] = None,
    template_set: str = DEFAULT_TEMPLATE_SET,
    style_profile: str = DEFAULT_STYLE_PROFILE,
    config: Optional[ReconcileConfig] = None,
    parallel: bool = False,
) -> AnalysisSpec:
    """
    Reconcile one survey definition with one preregistration.

    Args:
        qsf_bytes / prereg_bytes: raw input documents
        prereg_format: markdown, text, json or docx
        candidate_tokens: vocabulary for the targeted catalogue parse;
            inferred from the preregistration when empty
        enrichment: optional structured model-extraction answer merged into
            the preregistration before building
        previous_spec: saved spec whose manual resolutions are reapplied

    Raises:
        QSFParseError, PreregParseError, SpecValidationError
    """
    cfg = config or get_config()

    if parallel and candidate_tokens:
        prereg, catalogue = _parse_inputs_parallel(
            qsf_bytes, prereg_bytes, prereg_format, list(candidate_tokens), cfg,
        )
    else:
        prereg = parse_prereg(prereg_bytes, prereg_format)
        tokens = list(candidate_tokens) if candidate_tokens else collect_candidate_tokens(prereg)
        logger.debug("Targeted catalogue parse with %d tokens", len(tokens))
        catalogue = parse_qsf(qsf_bytes, tokens, cfg)

    if enrichment is not None:
        prereg = apply_llm_enrichment(prereg, enrichment)

    spec = build_analysis_spec(
        catalogue,
        prereg,
        project_id=project_id,
        study_id=study_id,
        analysis_id=analysis_id,
        qsf_path=qsf_path,
        prereg_path=prereg_path,
        qsf_bytes=qsf_bytes,
        prereg_bytes=prereg_bytes,
        template_set=template_set,
        style_profile=style_profile,
        config=cfg,
    )
    validate_analysis_spec(spec.to_dict())

    if previous_spec is not None:
        spec = apply_saved_mappings(spec, previous_spec)
    return spec
