"""
JSON Schemas for the serialized contracts
=========================================
``ANALYSIS_SPEC_SCHEMA`` pins the camelCase AnalysisSpec consumed by the
R-template renderer and the mapping screen; field-for-field stability of
this document is the compatibility boundary.

``PREREG_JSON_SCHEMA`` describes a machine-authored preregistration that can
be loaded directly instead of being run through the text heuristics.
"""

import logging
from typing import Any, Dict

from jsonschema import validate as js_validate
from jsonschema.exceptions import ValidationError

from .errors import ErrorKind, SpecValidationError

logger = logging.getLogger(__name__)

_STRING_LIST = {"type": "array", "items": {"type": "string"}}
_STRING_MAP = {"type": "object", "additionalProperties": {"type": "string"}}
_NULLABLE_STRING = {"type": ["string", "null"]}

_INPUT_REF = {
    "type": "object",
    "required": ["path", "sha256"],
    "properties": {
        "path": {"type": "string"},
        "sha256": {"type": "string", "pattern": "^[0-9a-f]{64}$"},
    },
}

_MODEL = {
    "type": "object",
    "required": ["id", "family", "dv", "iv", "controls", "interactions", "formula", "unresolvedVariables"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "family": {"type": "string"},
        "dv": {"type": "string"},
        "iv": _STRING_LIST,
        "controls": _STRING_LIST,
        "interactions": _STRING_LIST,
        "formula": {"type": "string"},
        "unresolvedVariables": _STRING_LIST,
    },
}

_MAPPING = {
    "type": "object",
    "required": ["preregVar", "resolvedTo", "candidates"],
    "properties": {
        "preregVar": {"type": "string"},
        "resolvedTo": _NULLABLE_STRING,
        "candidates": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["key", "score"],
                "properties": {
                    "key": {"type": "string"},
                    "score": {"type": "number", "minimum": 0.0, "maximum": 1.0},
                },
            },
        },
    },
}

_WARNING = {
    "type": "object",
    "required": ["code", "message", "details"],
    "properties": {
        "code": {"type": "string", "minLength": 1},
        "message": {"type": "string"},
        "details": {"type": "object"},
    },
}

_DERIVED = {
    "type": "object",
    "required": ["name", "derivedType", "dependsOn", "definition"],
    "properties": {
        "name": {"type": "string"},
        "derivedType": {"type": "string"},
        "dependsOn": _STRING_LIST,
        "definition": {"type": "string"},
    },
}

ANALYSIS_SPEC_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "AnalysisSpec",
    "type": "object",
    "required": [
        "projectId", "studyId", "analysisId", "inputs", "dataContract",
        "variableMappings", "models", "outputs", "templateBindings", "warnings",
    ],
    "properties": {
        "projectId": {"type": "string"},
        "studyId": {"type": "string"},
        "analysisId": {"type": "string"},
        "inputs": {
            "type": "object",
            "required": ["qsf", "prereg"],
            "properties": {"qsf": _INPUT_REF, "prereg": _INPUT_REF},
        },
        "dataContract": {
            "type": "object",
            "required": [
                "source", "idColumns", "expectedColumns", "labelMap",
                "exclusions", "missingness", "derivedVariables",
            ],
            "properties": {
                "source": {"type": "string"},
                "idColumns": _STRING_MAP,
                "expectedColumns": {**_STRING_LIST, "uniqueItems": True},
                "labelMap": _STRING_MAP,
                "exclusions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["id", "criterion", "rFilter"],
                        "properties": {
                            "id": {"type": "string"},
                            "criterion": {"type": "string"},
                            "rFilter": {"type": "string"},
                        },
                    },
                },
                "missingness": _NULLABLE_STRING,
                "derivedVariables": {"type": "array", "items": _DERIVED},
            },
        },
        "variableMappings": {"type": "array", "items": _MAPPING},
        "models": {
            "type": "object",
            "required": ["main", "exploratory", "robustness"],
            "properties": {
                "main": {"type": "array", "items": _MODEL},
                "exploratory": {"type": "array", "items": _MODEL},
                "robustness": {"type": "array", "items": _MODEL},
            },
        },
        "outputs": {
            "type": "object",
            "required": ["tables", "figures"],
            "properties": {"tables": _STRING_LIST, "figures": _STRING_LIST},
        },
        "templateBindings": {
            "type": "object",
            "required": ["templateSet", "styleProfile", "paths", "packages"],
            "properties": {
                "templateSet": {"type": "string"},
                "styleProfile": {"type": "string"},
                "paths": _STRING_MAP,
                "packages": _STRING_LIST,
            },
        },
        "warnings": {"type": "array", "items": _WARNING},
    },
}

_PREREG_MODEL = {
    "type": "object",
    "required": ["id", "dv", "iv", "controls", "interactionTerms"],
    "properties": {
        "id": {"type": "string"},
        "dv": {"type": "string"},
        "iv": _STRING_LIST,
        "controls": _STRING_LIST,
        "interactionTerms": _STRING_LIST,
        "formula": _NULLABLE_STRING,
    },
}

PREREG_JSON_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "PreregistrationSpec",
    "type": "object",
    "required": [
        "metadata", "variables", "mainAnalyses", "exploratoryAnalyses",
        "robustnessChecks", "exclusionRules", "derivedScales", "sections", "warnings",
    ],
    "properties": {
        "metadata": {
            "type": "object",
            "properties": {"title": _NULLABLE_STRING, "date": _NULLABLE_STRING},
        },
        "variables": {
            "type": "object",
            "required": ["dv", "iv", "controls", "moderators", "mediators"],
            "properties": {
                "dv": _STRING_LIST,
                "iv": _STRING_LIST,
                "controls": _STRING_LIST,
                "moderators": _STRING_LIST,
                "mediators": _STRING_LIST,
            },
        },
        "mainAnalyses": {"type": "array", "items": _PREREG_MODEL},
        "exploratoryAnalyses": {"type": "array", "items": _PREREG_MODEL},
        "robustnessChecks": _STRING_LIST,
        "exclusionRules": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "ruleType", "criterion"],
                "properties": {
                    "id": {"type": "string"},
                    "ruleType": {"type": "string"},
                    "variable": _NULLABLE_STRING,
                    "criterion": {"type": "string"},
                },
            },
        },
        "derivedScales": {"type": "array", "items": _DERIVED},
        "missingDataPlan": _NULLABLE_STRING,
        "sections": _STRING_MAP,
        "warnings": _STRING_LIST,
    },
}


def _error_path(err: ValidationError) -> str:
    return "/".join(str(p) for p in err.absolute_path) or "<root>"


def validate_analysis_spec(data: Dict[str, Any]) -> None:
    """Raise SpecValidationError when ``data`` does not match the AnalysisSpec schema."""
    try:
        js_validate(instance=data, schema=ANALYSIS_SPEC_SCHEMA)
    except ValidationError as e:
        path = _error_path(e)
        logger.error("AnalysisSpec failed schema validation at %s: %s", path, e.message)
        raise SpecValidationError(
            ErrorKind.SCHEMA_VIOLATION,
            f"AnalysisSpec schema violation at {path}: {e.message}",
            {'path': path},
        ) from e


def is_structured_prereg(data: Any) -> bool:
    """Whether ``data`` already has the structured PreregistrationSpec shape."""
    try:
        js_validate(instance=data, schema=PREREG_JSON_SCHEMA)
    except ValidationError:
        return False
    return True
