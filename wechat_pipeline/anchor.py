from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from html.entities import html5
from typing import Dict, List, Optional

from .config import CONTAINER_MARKER, CONTAINER_TAG, MIN_PREFIX_LENGTH, PREFIX_MATCH_LENGTH


class AnchorStrategy(Enum):
    """Ladder steps, most precise first."""
    COVER = "cover"
    PARAGRAPH = "paragraph"
    SUBSTRING = "substring"
    PREFIX = "prefix"


@dataclass(frozen=True)
class AnchorPoint:
    """Character offset in the markup where a fragment is spliced in."""
    offset: int
    strategy: AnchorStrategy


@dataclass(frozen=True)
class InsertionResult:
    """Outcome of placing one fragment: inserted at an anchor, or skipped."""
    plan_number: int
    anchor: Optional[AnchorPoint] = None
    reason: Optional[str] = None

    @property
    def inserted(self) -> bool:
        return self.anchor is not None

    @classmethod
    def skipped(cls, plan_number: int, reason: str) -> "InsertionResult":
        return cls(plan_number=plan_number, reason=reason)


_CONTAINER_OPEN_RE = re.compile(
    rf"^\s*<{CONTAINER_TAG}\b[^>]*data-tool=\"{re.escape(CONTAINER_MARKER)}\"[^>]*>",
    re.IGNORECASE,
)


def _entity_names() -> Dict[str, List[str]]:
    names: Dict[str, List[str]] = {}
    for name, char in html5.items():
        if len(char) == 1 and name.endswith(";"):
            names.setdefault(char, []).append("&" + name)
    return names


_ENTITY_NAMES = _entity_names()


@lru_cache(maxsize=None)
def _char_pattern(char: str) -> str:
    if char.isalnum() or char.isspace():
        return re.escape(char)
    # Markup may carry the character literally or as a named or numeric entity.
    forms = [re.escape(char)]
    forms += [re.escape(name) for name in _ENTITY_NAMES.get(char, [])]
    forms.append(rf"&#0*{ord(char)};")
    forms.append(rf"&#[xX]0*(?i:{ord(char):x});")
    return "(?:" + "|".join(forms) + ")"


def _needle(snippet: str) -> str:
    """Regex for ``snippet`` as it may appear in markup."""
    return "".join(_char_pattern(char) for char in snippet)


def _paragraph_match(document: str, needle: str) -> Optional[int]:
    pattern = re.compile(needle + r"[^<]*</p>", re.IGNORECASE)
    match = pattern.search(document)
    return match.end() if match else None


def _substring_match(document: str, needle: str) -> Optional[int]:
    match = re.search(needle, document)
    return match.end() if match else None


def locate(document: str, snippet: str) -> Optional[AnchorPoint]:
    """Find where a fragment illustrating ``snippet`` should go.

    Tries, in order: after the ``</p>`` closing the paragraph that contains the
    snippet; right after the snippet anywhere in the markup; right after the
    first ``PREFIX_MATCH_LENGTH`` characters of the snippet. Returns ``None``
    when nothing matches.
    """
    snippet = snippet.strip()
    if not snippet:
        return None
    needle = _needle(snippet)

    offset = _paragraph_match(document, needle)
    if offset is not None:
        return AnchorPoint(offset, AnchorStrategy.PARAGRAPH)

    offset = _substring_match(document, needle)
    if offset is not None:
        return AnchorPoint(offset, AnchorStrategy.SUBSTRING)

    prefix = snippet[:PREFIX_MATCH_LENGTH].strip()
    if len(prefix) >= MIN_PREFIX_LENGTH and prefix != snippet:
        offset = _substring_match(document, _needle(prefix))
        if offset is not None:
            return AnchorPoint(offset, AnchorStrategy.PREFIX)

    return None


def cover_point(document: str) -> AnchorPoint:
    """Start of the root content, inside the styled container when present."""
    match = _CONTAINER_OPEN_RE.match(document)
    return AnchorPoint(match.end() if match else 0, AnchorStrategy.COVER)


def insert(document: str, point: AnchorPoint, fragment: str) -> str:
    return document[:point.offset] + fragment + document[point.offset:]

