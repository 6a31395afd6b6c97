"""Media type parsing and matching for Content-Type and Accept headers."""

from typing import Iterable


def parse_media_type(value: str) -> str:
    """'application/json; charset=utf-8' -> 'application/json'."""
    return value.split(";", 1)[0].strip().lower()


def media_types_match(a: str, b: str) -> bool:
    """True when two media types (or ranges such as 'text/*') overlap."""
    a, b = parse_media_type(a), parse_media_type(b)
    if a == b or "*/*" in (a, b):
        return True
    a_type, _, a_sub = a.partition("/")
    b_type, _, b_sub = b.partition("/")
    return a_type == b_type and "*" in (a_sub, b_sub)


def find_media_type(content_type: str, declared: Iterable[str]) -> str | None:
    """The declared media type best matching content_type: exact first, then ranges."""
    declared = list(declared)
    wanted = parse_media_type(content_type)
    for media_type in declared:
        if parse_media_type(media_type) == wanted:
            return media_type
    for media_type in declared:
        if media_types_match(media_type, wanted):
            return media_type
    return None


def preferred_media_type(declared: Iterable[str]) -> str | None:
    """The media type to assume when a message does not state one: JSON if declared."""
    declared = list(declared)
    for media_type in declared:
        if is_json(media_type):
            return media_type
    return declared[0] if declared else None


def is_json(media_type: str) -> bool:
    media_type = parse_media_type(media_type)
    return media_type == "application/json" or media_type.endswith("+json")


def parse_accept(header: str) -> list[str]:
    """Media ranges listed in an Accept header, skipping those with q=0."""
    ranges = []
    for part in header.split(","):
        if not part.strip():
            continue
        media_range, *params = [p.strip() for p in part.split(";")]
        if any(p.replace(" ", "") in ("q=0", "q=0.0", "q=0.00", "q=0.000") for p in params):
            continue
        ranges.append(media_range.lower())
    return ranges
