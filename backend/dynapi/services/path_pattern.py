"""
Route patterns for generated endpoints

A pattern is a slash-delimited path whose segments are either literals or
named placeholders, written ``:name`` or ``{name}``.
"""
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote

from dynapi.core.errors import DefinitionError

PLACEHOLDER_RE = re.compile(r"^(?::([A-Za-z_][A-Za-z0-9_]*)|\{([A-Za-z_][A-Za-z0-9_]*)\})$")


@dataclass(frozen=True)
class Segment:
    value: str
    is_placeholder: bool = False


@dataclass(frozen=True)
class PathPattern:
    """Parsed route pattern."""

    raw: str
    segments: Tuple[Segment, ...]

    @classmethod
    def parse(cls, path: str) -> "PathPattern":
        if not path.startswith("/"):
            raise DefinitionError('Path must start with "/"')

        trimmed = path.rstrip("/")
        pieces = trimmed[1:].split("/") if trimmed else []

        segments = []
        seen = set()
        for piece in pieces:
            if piece == "":
                raise DefinitionError("Path must not contain empty segments")
            match = PLACEHOLDER_RE.match(piece)
            if match:
                name = match.group(1) or match.group(2)
                if name in seen:
                    raise DefinitionError(f"Duplicate path placeholder: {name}")
                seen.add(name)
                segments.append(Segment(name, is_placeholder=True))
            else:
                if ":" in piece or "{" in piece or "}" in piece:
                    raise DefinitionError(f"Invalid path segment: {piece}")
                segments.append(Segment(piece))

        return cls(raw=path, segments=tuple(segments))

    @property
    def placeholder_names(self) -> List[str]:
        return [s.value for s in self.segments if s.is_placeholder]

    @property
    def placeholder_count(self) -> int:
        return sum(1 for s in self.segments if s.is_placeholder)

    def match(self, parts: List[str]) -> Optional[Dict[str, Optional[str]]]:
        """
        Match already-split request segments.

        Literal segments compare exactly (case-sensitive). A placeholder
        captures whatever segment sits in its position; an empty segment is
        captured as ``None`` so required-ness checks treat it as missing.
        """
        if len(parts) != len(self.segments):
            return None

        captures: Dict[str, Optional[str]] = {}
        for segment, part in zip(self.segments, parts):
            if segment.is_placeholder:
                captures[segment.value] = part if part != "" else None
            elif segment.value != part:
                return None
        return captures

    def overlaps(self, other: "PathPattern") -> bool:
        """True if some request path could match both patterns."""
        if len(self.segments) != len(other.segments):
            return False
        for mine, theirs in zip(self.segments, other.segments):
            if not mine.is_placeholder and not theirs.is_placeholder and mine.value != theirs.value:
                return False
        return True

    def collides_with(self, other: "PathPattern") -> bool:
        """
        Overlapping patterns are only ambiguous when specificity cannot
        separate them, i.e. they carry the same number of placeholders.
        """
        return self.overlaps(other) and self.placeholder_count == other.placeholder_count


def split_request_path(raw_path: str) -> List[str]:
    """Split a raw (percent-encoded) request path into decoded segments."""
    if not raw_path or raw_path == "/":
        return []
    if raw_path.startswith("/"):
        raw_path = raw_path[1:]
    return [unquote(part) for part in raw_path.split("/")]
