"""Maps a concrete request method and path onto a specification endpoint."""

import logging
import re
from typing import NamedTuple
from urllib.parse import unquote

from contract_compat.errors import MalformedSpecification, UnknownPathOrMethod
from contract_compat.parser.base import EndpointSpec, Specification

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{([^{}/]+)\}")


class ResolvedEndpoint(NamedTuple):
    endpoint: EndpointSpec
    path_params: dict[str, str]


def _segments(path: str) -> list[str]:
    stripped = path.strip("/")
    return stripped.split("/") if stripped else []


def _segment_pattern(segment: str) -> re.Pattern:
    """Regex for one template segment; placeholders capture a non-empty value."""
    pattern = ""
    position = 0
    for match in _PLACEHOLDER.finditer(segment):
        pattern += re.escape(segment[position:match.start()])
        pattern += "([^/]+)"
        position = match.end()
    pattern += re.escape(segment[position:])
    return re.compile(pattern)


def match_template(template: str, path: str) -> dict[str, str] | None:
    """Bind the placeholders of template to the segments of path, or None if it does not fit."""
    template_segments = _segments(template)
    path_segments = _segments(path)
    if len(template_segments) != len(path_segments):
        return None

    params: dict[str, str] = {}
    for template_segment, segment in zip(template_segments, path_segments):
        names = _PLACEHOLDER.findall(template_segment)
        if not names:
            if template_segment != segment:
                return None
            continue
        match = _segment_pattern(template_segment).fullmatch(segment)
        if match is None:
            return None
        for name, value in zip(names, match.groups()):
            params[name] = unquote(value)
    return params


def literal_segments(template: str) -> int:
    return sum(1 for segment in _segments(template) if not _PLACEHOLDER.search(segment))


def _precedence(template: str) -> tuple[int, int]:
    """Literal segments first, then literal characters left around placeholders."""
    return literal_segments(template), len(_PLACEHOLDER.sub("", template))


def _candidate_paths(spec: Specification, path: str) -> list[str]:
    path = path.split("?", 1)[0]
    candidates = [path]
    for base_path in spec.base_paths:
        if path == base_path or path.startswith(base_path + "/"):
            candidates.append(path[len(base_path):] or "/")
    return candidates


def resolve(spec: Specification, method: str, path: str) -> ResolvedEndpoint:
    """Find the endpoint serving method + path.

    Among matching templates the one with the most literal segments wins,
    then the one with the most literal characters;
    an unbreakable tie is a defect of the specification.
    """
    method = method.upper()
    for candidate in _candidate_paths(spec, path):
        matches = []
        for (template, endpoint_method), endpoint in spec.endpoints.items():
            if endpoint_method != method:
                continue
            params = match_template(template, candidate)
            if params is not None:
                matches.append((_precedence(template), endpoint, params))
        if not matches:
            continue

        matches.sort(key=lambda m: m[0], reverse=True)
        best_score = matches[0][0]
        best = [m for m in matches if m[0] == best_score]
        if len(best) > 1:
            templates = ", ".join(m[1].path for m in best)
            raise MalformedSpecification(f"ambiguous path templates for {method} {path}: {templates}", "paths")

        _, endpoint, params = best[0]
        logger.debug("%s %s resolved to %s %s", method, path, endpoint.method, endpoint.path)
        return ResolvedEndpoint(endpoint, params)

    raise UnknownPathOrMethod(method, path)
