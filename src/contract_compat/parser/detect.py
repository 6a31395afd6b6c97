"""Read contract documents and auto-detect their format."""

import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


def read_document(file_path: Path) -> Any:
    """Parse a YAML or JSON document (JSON is a subset of YAML)."""
    text = file_path.read_text(encoding="utf-8")
    return yaml.safe_load(text)


def detect_format(document: Any) -> str:
    """Detect the format of a parsed contract document.

    Returns: 'openapi', 'swagger', 'pact' or 'unknown'.
    """
    if not isinstance(document, dict):
        return "unknown"

    if "openapi" in document:
        return "openapi"
    if "swagger" in document:
        return "swagger"
    if "interactions" in document and ("consumer" in document or "provider" in document):
        return "pact"
    return "unknown"


def detect_file_format(file_path: Path) -> str:
    """Detect the format of a contract file, 'unknown' when it cannot be parsed."""
    try:
        document = read_document(file_path)
    except yaml.YAMLError as e:
        logger.debug("%s is not YAML/JSON: %s", file_path, e)
        return "unknown"
    return detect_format(document)
