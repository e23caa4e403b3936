"""
Marker protocol: phase status encoded as sentinel comments in artifact text.

A marker is an HTML comment on its own line, optionally carrying a payload:

    <!-- CLARIFY_COMPLETE -->
    <!-- VERIFY_FINDINGS: missing acceptance criteria; vague error handling -->

Presence anywhere in the document is the only thing detection looks at.
Writes always normalize: exactly one occurrence, appended at the end of the
document, with mutually exclusive markers removed. The surrounding prose is
never parsed.
"""

import re
from functools import lru_cache

CLARIFY_COMPLETE = "CLARIFY_COMPLETE"
CLARIFY_VERIFIED = "CLARIFY_VERIFIED"
VERIFY_FINDINGS = "VERIFY_FINDINGS"
ANALYZED = "ANALYZED"
ANALYZE_VERIFIED = "ANALYZE_VERIFIED"
ANALYZE_FINDINGS = "ANALYZE_FINDINGS"

KNOWN_MARKERS: tuple[str, ...] = (
    CLARIFY_COMPLETE,
    CLARIFY_VERIFIED,
    VERIFY_FINDINGS,
    ANALYZED,
    ANALYZE_VERIFIED,
    ANALYZE_FINDINGS,
)

# Pairs that may never coexist in one artifact
EXCLUSIVE_PAIRS: tuple[tuple[str, str], ...] = (
    (CLARIFY_COMPLETE, VERIFY_FINDINGS),
    (CLARIFY_VERIFIED, VERIFY_FINDINGS),
    (ANALYZED, ANALYZE_FINDINGS),
    (ANALYZE_VERIFIED, ANALYZE_FINDINGS),
)

_NAME_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")


def exclusive_with(name: str) -> tuple[str, ...]:
    """Markers that setting ``name`` removes."""
    result = []
    for left, right in EXCLUSIVE_PAIRS:
        if left == name:
            result.append(right)
        elif right == name:
            result.append(left)
    return tuple(result)


def _source(name: str) -> str:
    if not _NAME_RE.match(name):
        raise ValueError(f"Invalid marker name: {name!r}")
    # Payload stops short of any later comment opener.
    return (
        r"<!--\s*" + name + r"(?:\s*:\s*(?P<payload>(?:(?!<!--).)*?))?\s*-->"
    )


@lru_cache(maxsize=64)
def _pattern(name: str) -> re.Pattern[str]:
    return re.compile(_source(name), re.DOTALL)


@lru_cache(maxsize=64)
def _line_pattern(name: str) -> re.Pattern[str]:
    """Marker occupying a whole line, including its line break."""
    return re.compile(
        r"^[ \t]*" + _source(name) + r"[ \t]*(?:\r?\n|\Z)", re.MULTILINE | re.DOTALL
    )


def render_marker(name: str, payload: str = "") -> str:
    """Render a marker comment. Payload is flattened onto one line."""
    _pattern(name)
    payload = " ".join(payload.replace("-->", "->").split())
    if payload:
        return f"<!-- {name}: {payload} -->"
    return f"<!-- {name} -->"


def has_marker(text: str, name: str) -> bool:
    """True if the marker occurs anywhere in the text."""
    return _pattern(name).search(text) is not None


def marker_payload(text: str, name: str) -> str | None:
    """
    Payload of the last occurrence of a marker.

    Returns:
        The payload ("" for a bare marker), or None if the marker is absent
    """
    matches = list(_pattern(name).finditer(text))
    if not matches:
        return None
    return (matches[-1].group("payload") or "").strip()


def count_markers(text: str, name: str) -> int:
    return len(_pattern(name).findall(text))


def markers_present(text: str) -> tuple[str, ...]:
    """Known markers present in the text, in protocol order."""
    return tuple(name for name in KNOWN_MARKERS if has_marker(text, name))


def conflicts(text: str) -> tuple[tuple[str, str], ...]:
    """Mutually exclusive marker pairs that are present together."""
    return tuple(
        (left, right)
        for left, right in EXCLUSIVE_PAIRS
        if has_marker(text, left) and has_marker(text, right)
    )


def clear_marker(text: str, name: str) -> str:
    """
    Remove every occurrence of a marker.

    A line holding nothing but the marker is dropped entirely; a marker
    embedded in other text is cut out of its line.
    """
    pattern = _pattern(name)
    if not pattern.search(text):
        return text
    text = _line_pattern(name).sub("", text)
    return pattern.sub("", text)


def set_marker(text: str, name: str, payload: str = "") -> str:
    """
    Ensure exactly one occurrence of a marker, at the end of the document.

    Idempotent for a given (name, payload). Any marker mutually exclusive
    with ``name`` is removed first.
    """
    text = clear_marker(text, name)
    for other in exclusive_with(name):
        text = clear_marker(text, other)
    if text and not text.endswith("\n"):
        text += "\n"
    return text + render_marker(name, payload) + "\n"
