"""
Preregistration loader
======================
Reads a preregistration in any supported container and hands plain text to
the extractor.

Formats:
- markdown / text: extracted as-is
- json: loaded directly when it already has the structured shape, otherwise
  its compact text is run through the extractor
- docx: ``word/document.xml`` unwrapped from the zip container, then split
  on numbered section headings (``1) Variables``)

Also owns the two caller-boundary helpers that sit around extraction:
``apply_llm_enrichment`` (merge an external model's structured answer) and
``collect_candidate_tokens`` (vocabulary for the targeted QSF parse).
"""

import copy
import html
import io
import json
import logging
import re
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import ErrorKind, PreregParseError
from .prereg_extractor import AnalysisModel, PreregistrationSpec, fill_from_text
from .spec_schema import is_structured_prereg

logger = logging.getLogger(__name__)

FORMAT_MARKDOWN = "markdown"
FORMAT_TEXT = "text"
FORMAT_JSON = "json"
FORMAT_DOCX = "docx"
SUPPORTED_FORMATS = (FORMAT_MARKDOWN, FORMAT_TEXT, FORMAT_JSON, FORMAT_DOCX)

WARN_DOCX_SECTIONS = "DOCX_SECTIONS_NOT_DETECTED"
LLM_AMBIGUITY_PREFIX = "LLM_AMBIGUITY: "
LLM_MECHANISM_ID = "llm_mechanism"

DOCX_DOCUMENT_PART = "word/document.xml"

_SECTION_RE = re.compile(r"(?m)^\s*(\d+)\)\s+(.+)$")
_XML_TAG_RE = re.compile(r"<[^>]+>")


def detect_format(path: Union[str, Path]) -> str:
    suffix = Path(path).suffix.lower()
    if suffix in (".md", ".markdown"):
        return FORMAT_MARKDOWN
    if suffix == ".json":
        return FORMAT_JSON
    if suffix == ".docx":
        return FORMAT_DOCX
    return FORMAT_TEXT


def _decode_text(raw: Union[bytes, str]) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8-sig", errors="replace")
    return raw


def parse_prereg(raw: Union[bytes, str], fmt: str = FORMAT_MARKDOWN) -> PreregistrationSpec:
    """Parse a preregistration document of the given format."""
    if fmt not in SUPPORTED_FORMATS:
        raise PreregParseError(
            ErrorKind.UNSUPPORTED_FORMAT,
            f"Unsupported prereg format: {fmt}",
            {'format': fmt, 'supported': list(SUPPORTED_FORMATS)},
        )

    if fmt == FORMAT_DOCX:
        if isinstance(raw, str):
            raise PreregParseError(
                ErrorKind.MALFORMED_INPUT,
                "DOCX input must be the raw file bytes",
                {'format': fmt},
            )
        return build_structured_spec(extract_docx_text(raw))

    text = _decode_text(raw)
    if fmt == FORMAT_JSON:
        return parse_prereg_json(text)

    spec = PreregistrationSpec()
    fill_from_text(spec, text)
    return spec


def parse_prereg_json(text: str) -> PreregistrationSpec:
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise PreregParseError(
            ErrorKind.MALFORMED_INPUT,
            f"Invalid prereg JSON: {e}",
            {'line': e.lineno, 'column': e.colno},
        ) from e

    if is_structured_prereg(parsed):
        logger.info("Loaded structured prereg JSON directly")
        return PreregistrationSpec.from_dict(parsed)

    logger.info("Prereg JSON is not in structured form; extracting from its text")
    spec = PreregistrationSpec()
    fill_from_text(spec, json.dumps(parsed, separators=(",", ":"), ensure_ascii=False))
    return spec


def extract_docx_text(data: bytes) -> str:
    """Plain text of a DOCX body: paragraphs and table rows end lines, cells are spaced."""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            try:
                xml = archive.read(DOCX_DOCUMENT_PART).decode("utf-8", errors="replace")
            except KeyError as e:
                raise PreregParseError(
                    ErrorKind.MISSING_SECTION,
                    f"DOCX missing {DOCX_DOCUMENT_PART}",
                    {'part': DOCX_DOCUMENT_PART},
                ) from e
    except zipfile.BadZipFile as e:
        raise PreregParseError(ErrorKind.MALFORMED_INPUT, f"Invalid DOCX zip: {e}") from e

    text = (
        xml.replace("</w:p>", "\n")
        .replace("</w:tr>", "\n")
        .replace("</w:tc>", " ")
    )
    return html.unescape(_XML_TAG_RE.sub(" ", text))


def build_structured_spec(plain_text: str) -> PreregistrationSpec:
    """
    Split numbered-template text into sections, then extract from the sections.

    Without any ``N) Heading`` line the whole text is extracted and a
    DOCX_SECTIONS_NOT_DETECTED warning is recorded.
    """
    spec = PreregistrationSpec()
    matches = list(_SECTION_RE.finditer(plain_text))
    if not matches:
        spec.warnings.append(WARN_DOCX_SECTIONS)
        fill_from_text(spec, plain_text)
        return spec

    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(plain_text)
        heading = match.group(0).strip()
        spec.sections[heading] = plain_text[match.start():end].strip()

    logger.debug("Detected %d numbered sections", len(spec.sections))
    fill_from_text(spec, "\n\n".join(spec.sections.values()))
    return spec


# ─── External enrichment ───────────────────────────────────────────────────

def _string_items(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def _payload_models(items: Any) -> List[AnalysisModel]:
    if not isinstance(items, list):
        return []
    out = []
    for item in items:
        if not isinstance(item, dict):
            continue
        model = AnalysisModel.from_dict(item)
        if model is not None:
            out.append(model)
    return out


def apply_llm_enrichment(
    prereg: PreregistrationSpec,
    payload: Union[str, Dict[str, Any], None],
) -> PreregistrationSpec:
    """
    Merge a structured model-extraction answer into a copy of ``prereg``.

    ``payload`` is the JSON answer (text or already decoded) with a
    ``parsed`` object holding any of mainModels, exploratoryModels,
    mechanismModels, robustnessChecks, variables.{moderators,mediators} and
    ambiguities. An unreadable payload leaves the spec unchanged.
    """
    result = copy.deepcopy(prereg)
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable enrichment payload")
            return result
    if not isinstance(payload, dict):
        return result
    parsed = payload.get('parsed')
    if not isinstance(parsed, dict):
        return result

    main = _payload_models(parsed.get('mainModels'))
    if main:
        result.main_analyses = main
    exploratory = _payload_models(parsed.get('exploratoryModels'))
    if exploratory:
        result.exploratory_analyses = exploratory
    for model in _payload_models(parsed.get('mechanismModels')):
        if not model.id:
            model.id = LLM_MECHANISM_ID
        result.exploratory_analyses.append(model)

    if isinstance(parsed.get('robustnessChecks'), list):
        result.robustness_checks = _string_items(parsed['robustnessChecks'])

    variables = parsed.get('variables')
    if isinstance(variables, dict):
        if isinstance(variables.get('mediators'), list):
            result.variables.mediators = _string_items(variables['mediators'])
        if isinstance(variables.get('moderators'), list):
            result.variables.moderators = _string_items(variables['moderators'])

    result.warnings.extend(
        f"{LLM_AMBIGUITY_PREFIX}{a}" for a in _string_items(parsed.get('ambiguities'))
    )
    logger.info(
        "Enrichment applied: %d main, %d exploratory models",
        len(result.main_analyses), len(result.exploratory_analyses),
    )
    return result


def collect_candidate_tokens(prereg: PreregistrationSpec) -> List[str]:
    """Every declared variable name plus every main-model variable, sorted and unique."""
    tokens: List[str] = []
    tokens.extend(prereg.variables.dv)
    tokens.extend(prereg.variables.iv)
    tokens.extend(prereg.variables.controls)
    for model in prereg.main_analyses:
        tokens.append(model.dv)
        tokens.extend(model.iv)
        tokens.extend(model.controls)
    return sorted(set(tokens))


def load_prereg_file(path: Union[str, Path], fmt: Optional[str] = None) -> PreregistrationSpec:
    """Read ``path`` and parse it, detecting the format from the extension."""
    path = Path(path)
    return parse_prereg(path.read_bytes(), fmt or detect_format(path))
