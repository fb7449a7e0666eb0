"""
QSF Parser for the Analysis Specification Builder
=================================================
Parses Qualtrics Survey Format (.qsf) files into a flat catalogue of the
columns that will appear in the exported response data.

QSF files are JSON-based exports from the Qualtrics survey platform. Only two
element kinds matter here:
- ``SQ`` survey questions, one export column each
- ``FL`` survey flow, which may declare embedded-data fields at any depth

Every other element kind (blocks, randomizer options, ...) is skipped so that
new Qualtrics element kinds never break parsing.

When the caller passes candidate tokens (the variable names a
preregistration mentions), questions that do not resemble any of them are
dropped. That filter is not a mapping decision; the mapper still scores every
column that survives.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .config import ReconcileConfig, get_config
from .errors import ErrorKind, QSFParseError
from .token_normalizer import normalize_token, token_match_score

logger = logging.getLogger(__name__)

DEFAULT_SURVEY_NAME = "Qualtrics Survey"

# Metadata columns every Qualtrics response export carries
STANDARD_COLUMNS = [
    "ResponseId",
    "Finished",
    "Progress",
    "Duration (in seconds)",
    "RecordedDate",
    "StartDate",
    "EndDate",
    "Status",
]

_HTML_TAG_RE = re.compile(r"<[^>]+>")


@dataclass(frozen=True)
class SurveyChoice:
    """One answer option of a question."""
    value: str
    label: str

    def to_dict(self) -> Dict[str, Any]:
        return {'value': self.value, 'label': self.label}


@dataclass(frozen=True)
class EmbeddedDataField:
    """A survey-level variable declared in the flow (exported as a column)."""
    name: str
    default_value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'defaultValue': self.default_value}


@dataclass(frozen=True)
class SurveyColumn:
    """One exported data column backed by a survey question."""
    qualtrics_qid: str
    export_tag: str
    question_text: str
    question_type: str = "unknown"
    choices: Tuple[SurveyChoice, ...] = ()

    @property
    def aliases(self) -> Tuple[str, str, str]:
        """Names the column can be matched under; only export_tag is a key."""
        return (self.export_tag, self.qualtrics_qid, self.question_text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'qualtricsQid': self.qualtrics_qid,
            'exportTag': self.export_tag,
            'questionText': self.question_text,
            'questionType': self.question_type,
            'choices': [c.to_dict() for c in self.choices],
        }


@dataclass
class SurveyCatalogue:
    """Normalized column catalogue for one survey."""
    survey_name: str
    questions: List[SurveyColumn] = field(default_factory=list)
    embedded_data_fields: List[EmbeddedDataField] = field(default_factory=list)
    expected_columns: List[str] = field(default_factory=list)
    label_map: Dict[str, str] = field(default_factory=dict)

    @property
    def embedded_data(self) -> List[str]:
        return [f.name for f in self.embedded_data_fields]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'surveyName': self.survey_name,
            'questions': [q.to_dict() for q in self.questions],
            'embeddedData': self.embedded_data,
            'embeddedDataFields': [f.to_dict() for f in self.embedded_data_fields],
            'expectedColumns': list(self.expected_columns),
            'labelMap': dict(self.label_map),
        }


# ─── Decoded element variants ──────────────────────────────────────────────

@dataclass(frozen=True)
class QuestionElement:
    payload: Dict[str, Any]


@dataclass(frozen=True)
class FlowElement:
    payload: Any


@dataclass(frozen=True)
class OtherElement:
    kind: str


SurveyElement = Union[QuestionElement, FlowElement, OtherElement]


def decode_element(element: Any) -> SurveyElement:
    """Decode one raw SurveyElements entry into a tagged variant."""
    if not isinstance(element, dict):
        return OtherElement(kind=type(element).__name__)
    kind = element.get('Element', '')
    kind = kind if isinstance(kind, str) else ''
    payload = element.get('Payload')
    if kind == 'SQ' and isinstance(payload, dict):
        return QuestionElement(payload=payload)
    if kind == 'FL' and payload is not None:
        return FlowElement(payload=payload)
    return OtherElement(kind=kind)


def _load_qsf_json(raw: Union[bytes, str]) -> Any:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode('utf-8-sig')
        except UnicodeDecodeError as e:
            raise QSFParseError(
                ErrorKind.MALFORMED_INPUT,
                f"Invalid QSF JSON: {e}",
                {'position': e.start},
            ) from e
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise QSFParseError(
            ErrorKind.MALFORMED_INPUT,
            f"Invalid QSF JSON: {e}",
            {'line': e.lineno, 'column': e.colno},
        ) from e


def _survey_elements(root: Any) -> List[Any]:
    """Return SurveyElements as a list across QSF variants, or raise."""
    elements = root.get('SurveyElements') if isinstance(root, dict) else None
    if isinstance(elements, dict):
        # Older exports key elements by ID
        elements = list(elements.values())
    if not isinstance(elements, list):
        raise QSFParseError(
            ErrorKind.MISSING_SECTION,
            "QSF missing SurveyElements array",
            {'section': 'SurveyElements'},
        )
    return elements


def _survey_name(root: Dict[str, Any]) -> str:
    entry = root.get('SurveyEntry')
    if isinstance(entry, dict):
        name = entry.get('SurveyName')
        if isinstance(name, str):
            return name
    return DEFAULT_SURVEY_NAME


def parse_qsf(
    raw: Union[bytes, str],
    candidate_tokens: Optional[Sequence[str]] = None,
    config: Optional[ReconcileConfig] = None,
) -> SurveyCatalogue:
    """
    Parse a QSF document into a SurveyCatalogue.

    Args:
        raw: QSF file content (bytes or already-decoded text)
        candidate_tokens: Optional preregistration variable names; when given,
            only questions resembling at least one of them are kept
        config: Threshold overrides (defaults to the global config)

    Returns:
        SurveyCatalogue with questions, embedded data, expected columns and
        the export-tag → label map

    Raises:
        QSFParseError: malformed JSON or missing SurveyElements
    """
    cfg = config or get_config()
    root = _load_qsf_json(raw)
    elements = _survey_elements(root)
    survey_name = _survey_name(root)

    token_filters = [t for t in (normalize_token(t) for t in candidate_tokens or []) if t]

    questions: List[SurveyColumn] = []
    embedded: List[EmbeddedDataField] = []
    skipped_kinds: Dict[str, int] = {}
    dropped = 0

    for element in elements:
        decoded = decode_element(element)
        if isinstance(decoded, QuestionElement):
            question = _parse_question(decoded.payload)
            if token_filters and not _matches_any_token(question, token_filters, cfg):
                dropped += 1
                logger.debug("Targeted parse dropped question %s", question.export_tag)
                continue
            questions.append(question)
        elif isinstance(decoded, FlowElement):
            _collect_embedded_data(decoded.payload, embedded)
        else:
            skipped_kinds[decoded.kind] = skipped_kinds.get(decoded.kind, 0) + 1

    embedded_fields = _dedupe_embedded_data(embedded)
    catalogue = build_catalogue(survey_name, questions, embedded_fields, cfg)

    logger.info(
        "Parsed QSF '%s': %d questions (%d dropped by token filter), %d embedded data fields",
        survey_name, len(questions), dropped, len(embedded_fields),
    )
    if skipped_kinds:
        logger.debug("Skipped QSF element kinds: %s", skipped_kinds)
    return catalogue


def _matches_any_token(question: SurveyColumn, token_filters: List[str], cfg: ReconcileConfig) -> bool:
    n_tag = normalize_token(question.export_tag)
    n_text = normalize_token(question.question_text)
    threshold = cfg.token_filter_threshold
    return any(
        token_match_score(token, n_tag) >= threshold or token_match_score(token, n_text) >= threshold
        for token in token_filters
    )


def _parse_question(payload: Dict[str, Any]) -> SurveyColumn:
    """Parse a survey question payload."""
    qid = payload.get('QuestionID')
    qid = qid if isinstance(qid, str) else "UNKNOWN"

    export_tag = payload.get('DataExportTag')
    if not isinstance(export_tag, str) or not export_tag.strip():
        export_tag = qid

    text = payload.get('QuestionText')
    question_text = _clean_html(text if isinstance(text, str) else '')

    q_type = payload.get('QuestionType')
    if isinstance(q_type, dict):
        q_type = q_type.get('Type')
    question_type = q_type if isinstance(q_type, str) else "unknown"

    return SurveyColumn(
        qualtrics_qid=qid,
        export_tag=export_tag,
        question_text=question_text,
        question_type=question_type,
        choices=tuple(_parse_choices(payload)),
    )


def _parse_choices(payload: Dict[str, Any]) -> List[SurveyChoice]:
    """Choice labels in ChoiceOrder when present, else document order."""
    choices = payload.get('Choices')
    if isinstance(choices, list):
        choices = {str(i): c for i, c in enumerate(choices, 1)}
    if not isinstance(choices, dict):
        return []

    order = [str(c) for c in payload.get('ChoiceOrder') or [] if str(c) in choices]
    order += [k for k in choices if k not in order]

    parsed = []
    for value in order:
        choice = choices[value]
        if isinstance(choice, dict):
            display = choice.get('Display')
            label = _clean_html(display) if isinstance(display, str) else ''
        else:
            label = _clean_html(str(choice))
        parsed.append(SurveyChoice(value=str(value), label=label))
    return parsed


def _collect_embedded_data(node: Any, out: List[EmbeddedDataField]) -> None:
    """Recursively collect embedded-data declarations at any depth."""
    if isinstance(node, dict):
        if node.get('Type') == 'EmbeddedData':
            fields = node.get('EmbeddedData')
            if isinstance(fields, list):
                for ed in fields:
                    if not isinstance(ed, dict):
                        continue
                    name = ed.get('Field')
                    if not isinstance(name, str) or not name.strip():
                        continue
                    value = ed.get('Value')
                    out.append(EmbeddedDataField(
                        name=name,
                        default_value=value if isinstance(value, str) else None,
                    ))
        for value in node.values():
            _collect_embedded_data(value, out)
    elif isinstance(node, list):
        for item in node:
            _collect_embedded_data(item, out)


def _dedupe_embedded_data(fields: Iterable[EmbeddedDataField]) -> List[EmbeddedDataField]:
    """Sort by name and drop case-insensitive repeats (first one wins)."""
    out: List[EmbeddedDataField] = []
    seen = set()
    for f in sorted(fields, key=lambda f: f.name):
        key = f.name.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(f)
    return out


def build_catalogue(
    survey_name: str,
    questions: List[SurveyColumn],
    embedded_data_fields: List[EmbeddedDataField],
    config: Optional[ReconcileConfig] = None,
) -> SurveyCatalogue:
    """Assemble expected columns and the label map from parsed elements."""
    cfg = config or get_config()
    expected_columns = list(STANDARD_COLUMNS)
    seen = set(expected_columns)
    label_map: Dict[str, str] = {}

    for q in questions:
        if q.export_tag not in seen:
            seen.add(q.export_tag)
            expected_columns.append(q.export_tag)
        label_map[q.export_tag] = clean_label(q.question_text, cfg.label_max_length)

    for ed in embedded_data_fields:
        if ed.name not in seen:
            seen.add(ed.name)
            expected_columns.append(ed.name)

    return SurveyCatalogue(
        survey_name=survey_name,
        questions=list(questions),
        embedded_data_fields=list(embedded_data_fields),
        expected_columns=expected_columns,
        label_map=label_map,
    )


def clean_label(text: str, max_length: int = 200) -> str:
    """Collapse whitespace and cap the label length."""
    compact = ' '.join(text.replace('\n', ' ').replace('\r', ' ').split())
    if len(compact) > max_length:
        return compact[:max_length - 3] + '...'
    return compact


def _clean_html(text: str) -> str:
    """Remove HTML tags and clean up text."""
    if not text:
        return ''

    # Tags become spaces so adjacent words do not merge
    clean = _HTML_TAG_RE.sub(' ', str(text))

    # Decode common HTML entities
    clean = clean.replace('&nbsp;', ' ')
    clean = clean.replace('&lt;', '<')
    clean = clean.replace('&gt;', '>')
    clean = clean.replace('&quot;', '"')
    clean = clean.replace('&#39;', "'")
    clean = clean.replace('&amp;', '&')

    return ' '.join(clean.split())


def summarize_catalogue(catalogue: SurveyCatalogue) -> str:
    """
    Generate a human-readable summary of a parsed catalogue.

    Args:
        catalogue: Output from parse_qsf()

    Returns:
        Formatted string summary
    """
    lines = [
        "=" * 60,
        "QSF CATALOGUE SUMMARY",
        "=" * 60,
        "",
        f"Survey Name: {catalogue.survey_name}",
        f"Total Questions: {len(catalogue.questions)}",
        f"Expected Columns: {len(catalogue.expected_columns)}",
        "",
    ]

    if catalogue.questions:
        lines.append(f"QUESTIONS ({len(catalogue.questions)}):")
        for q in catalogue.questions[:10]:
            lines.append(f"  - {q.export_tag} [{q.question_type}]: {q.question_text[:50]}")
        if len(catalogue.questions) > 10:
            lines.append(f"  ... and {len(catalogue.questions) - 10} more")
        lines.append("")

    if catalogue.embedded_data_fields:
        lines.append(f"EMBEDDED DATA FIELDS ({len(catalogue.embedded_data_fields)}):")
        for ed in catalogue.embedded_data_fields[:10]:
            default = f" (default: {ed.default_value})" if ed.default_value else ""
            lines.append(f"  - {ed.name}{default}")
        lines.append("")

    lines.append("=" * 60)

    return "\n".join(lines)
