"""
Error types for the reconciliation pipeline
===========================================
Hard failures abort a parse and are surfaced to the caller. Everything else
degrades to a warning on the generated spec, so only the cases below raise.

Error kinds:
- MALFORMED_INPUT: the QSF or a JSON preregistration is not valid JSON, or a
  DOCX container cannot be opened
- MISSING_SECTION: a required top-level section is absent (QSF
  SurveyElements, DOCX word/document.xml)
- SCHEMA_VIOLATION: a generated or saved AnalysisSpec does not match the
  published schema
- UNSUPPORTED_FORMAT: the caller asked for a preregistration format we do not
  read
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Closed set of hard-failure categories."""
    MALFORMED_INPUT = "malformed_input"
    MISSING_SECTION = "missing_section"
    SCHEMA_VIOLATION = "schema_violation"
    UNSUPPORTED_FORMAT = "unsupported_format"


class AnalysisSpecError(Exception):
    """Base class for every hard failure raised by analysis_app."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'message': self.message,
            'context': self.context,
        }


class QSFParseError(AnalysisSpecError):
    """Raised when a survey definition cannot be parsed."""


class PreregParseError(AnalysisSpecError):
    """Raised when a preregistration document cannot be read."""


class SpecValidationError(AnalysisSpecError):
    """Raised when an AnalysisSpec fails schema validation."""
