"""
Sheet identity detection from a page's extracted text layer.

Three strategies, first hit wins:
  1. Label match    → an explicit "SHEET NO: A-101" / "DWG NO S2.3" label   (high)
  2. Pattern match  → best scoring bare token that parses as a sheet number (medium)
  3. Fallback       → "<set title> - Page <n>"                              (low)

Every candidate must parse under the same strict sheet-number grammar, so a
noisy title block can never beat the safe fallback with garbage.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from ..models.drawing import SHEET_NUMBER_MAX, SHEET_TITLE_MAX

# Two-letter codes first so the regex alternation prefers them
DISCIPLINE_CODES = ("FP", "SP", "A", "S", "M", "E", "P", "C", "L", "I", "G", "T", "D", "X")
UNKNOWN_DISCIPLINE = "X"

SHEET_NUMBER_RE = re.compile(
    r"^(?:(?P<prefix>FP|SP|[ASMEPCLIGTDX])[-./]?)?"
    r"(?P<number>\d{1,4})"
    r"(?:\.(?P<sub>\d{1,3}))?"
    r"(?P<suffix>[A-Z])?$"
)

LABEL_RE = re.compile(
    r"\b(?:SHEET|SHT|DWG|DRAWING)\.?\s*"
    r"(?:(?:NO|NUM|NUMBER)\b\.?\s*[:#\-]?|#\s*[:\-]?|:)"
    r"\s*(?P<rest>.*)$",
    re.IGNORECASE,
)

TITLE_RE = re.compile(
    r"^\s*(?:SHEET\s+|DRAWING\s+|DWG\.?\s+)?TITLE\s*[:\-]\s*(?P<title>.*?)\s*$",
    re.IGNORECASE,
)

SHEET_WORD_RE = re.compile(r"\b(?:SHEET|SHT|DWG|DRAWING)\b")
NOISE_WORD_RE = re.compile(r"\b(?:DETAIL|SCALE|DATE|ISSUED|REVISION|PROJECT)\b")

LABEL_WORDS = {
    "SHEET", "SHEET NO", "SHEET NUMBER", "SHT", "SHT NO", "DWG", "DWG NO",
    "DRAWING", "DRAWING NO", "DRAWING NUMBER", "TITLE", "SHEET TITLE",
    "DRAWING TITLE", "NO", "NUMBER",
}

TOKEN_SPLIT_RE = re.compile(r"[\s,;()\[\]{}|]+")
SEPARATORS = "-./"

SHORT_LINE = 40
MIN_PATTERN_SCORE = 2
TITLE_WINDOW = 2


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class DetectionMethod(str, Enum):
    LABEL = "label"
    PATTERN = "pattern"
    FALLBACK = "fallback"


@dataclass
class SheetDetection:
    sheet_number: str
    sheet_title: str
    discipline: str
    confidence: Confidence
    method: DetectionMethod
    source_line: Optional[str] = None
    score: Optional[int] = None

    def diagnostics(self) -> dict:
        """Audit trail stored on the sheet version's extracted_metadata."""
        data = {
            "method": self.method.value,
            "confidence": self.confidence.value,
            "source_line": self.source_line,
            "detected_number": self.sheet_number,
        }
        if self.score is not None:
            data["score"] = self.score
        return data


def normalize_token(token: str) -> str:
    cleaned = re.sub(r"[^A-Z0-9./\-]", "", token.upper())
    return cleaned.strip(SEPARATORS)


def is_sheet_number(candidate: str) -> bool:
    return bool(candidate) and SHEET_NUMBER_RE.match(candidate) is not None


def discipline_for(sheet_number: str) -> str:
    """Discipline code from the leading letters of a sheet number."""
    upper = sheet_number.strip().upper()
    if upper[:2] in ("FP", "SP"):
        return upper[:2]
    if upper[:1] in DISCIPLINE_CODES:
        return upper[:1]
    return UNKNOWN_DISCIPLINE


def fallback_label(set_title: str, page_number: int) -> str:
    return f"{set_title} - Page {page_number}"


def _sanitize(line: str) -> str:
    collapsed = " ".join(line.split())
    return collapsed.strip(" :-#|_=*")


def _looks_like_prose(line: str) -> bool:
    text = _sanitize(line)
    if len(text) < 3 or not any(ch.isalpha() for ch in text):
        return False
    if text.upper().rstrip(".:#") in LABEL_WORDS:
        return False
    if LABEL_RE.search(text) or TITLE_RE.match(text):
        return False
    return not is_sheet_number(normalize_token(text))


def _nearest_prose(lines: list[str], index: int) -> Optional[str]:
    # Title blocks usually put the title just above the number
    for distance in range(1, TITLE_WINDOW + 1):
        for neighbour in (index - distance, index + distance):
            if 0 <= neighbour < len(lines) and _looks_like_prose(lines[neighbour]):
                return _sanitize(lines[neighbour])
    return None


def _explicit_title(lines: list[str]) -> Optional[str]:
    for i, line in enumerate(lines):
        match = TITLE_RE.match(line)
        if not match:
            continue
        title = _sanitize(match.group("title"))
        if title and any(ch.isalpha() for ch in title):
            return title
        # "SHEET TITLE:" alone on a line, value on the next one
        for follower in lines[i + 1:i + 1 + TITLE_WINDOW]:
            if _looks_like_prose(follower):
                return _sanitize(follower)
    return None


def _label_candidates(rest: str) -> list[str]:
    tokens = [t for t in TOKEN_SPLIT_RE.split(rest) if t]
    candidates = []
    if tokens:
        candidates.append(normalize_token(tokens[0]))
    if len(tokens) > 1:
        # "SHEET NO: A 101"
        candidates.append(normalize_token(tokens[0] + tokens[1]))
    return candidates


def _match_label(lines: list[str]) -> Optional[tuple[str, int]]:
    for i, line in enumerate(lines):
        match = LABEL_RE.search(line)
        if not match:
            continue

        rest = match.group("rest").strip()
        if not rest:
            # Label at end of line, value on the next non-empty one
            following = next((l for l in lines[i + 1:i + 1 + TITLE_WINDOW] if l.strip()), "")
            rest = following.strip()

        for candidate in _label_candidates(rest):
            if is_sheet_number(candidate):
                return candidate, i
    return None


def _score_token(token: str, line: str) -> int:
    upper = line.upper()
    score = 0
    has_separator = any(sep in token for sep in SEPARATORS)
    if has_separator:
        score += 2
    if SHEET_WORD_RE.search(upper):
        score += 4
    if len(line.strip()) <= SHORT_LINE:
        score += 1
    if NOISE_WORD_RE.search(upper):
        score -= 1
    if not has_separator:
        digits = SHEET_NUMBER_RE.match(token).group("number")
        if len(digits) == 4 and 1900 <= int(digits) <= 2100:
            score -= 3
    return score


def _match_pattern(lines: list[str]) -> Optional[tuple[str, int, int]]:
    best: Optional[tuple[str, int, int]] = None
    for i, line in enumerate(lines):
        for raw in TOKEN_SPLIT_RE.split(line):
            token = normalize_token(raw)
            if not is_sheet_number(token):
                continue
            score = _score_token(token, line)
            if best is None or score > best[2]:
                best = (token, i, score)

    if best is None or best[2] < MIN_PATTERN_SCORE:
        return None
    return best


def _clip(value: str, limit: int) -> str:
    return value if len(value) <= limit else value[:limit].rstrip()


def detect_sheet_metadata(text: str, set_title: str, page_number: int) -> SheetDetection:
    """
    Recover sheet number, title and discipline from one page's text.

    Args:
        text:        Extracted text layer of the page (may be empty)
        set_title:   Title of the parent drawing set, used for the fallback
        page_number: 1-based page number

    Returns:
        SheetDetection with the confidence tier of the strategy that fired.
    """
    lines = [line for line in (text or "").splitlines()]
    fallback = fallback_label(set_title, page_number)

    label = _match_label(lines)
    if label:
        number, index = label
        title = _explicit_title(lines) or _nearest_prose(lines, index) or fallback
        return SheetDetection(
            sheet_number=number,
            sheet_title=_clip(title, SHEET_TITLE_MAX),
            discipline=discipline_for(number),
            confidence=Confidence.HIGH,
            method=DetectionMethod.LABEL,
            source_line=lines[index].strip(),
        )

    pattern = _match_pattern(lines)
    if pattern:
        number, index, score = pattern
        title = _nearest_prose(lines, index) or fallback
        return SheetDetection(
            sheet_number=number,
            sheet_title=_clip(title, SHEET_TITLE_MAX),
            discipline=discipline_for(number),
            confidence=Confidence.MEDIUM,
            method=DetectionMethod.PATTERN,
            source_line=lines[index].strip(),
            score=score,
        )

    return SheetDetection(
        sheet_number=fallback,
        sheet_title=_clip(fallback, SHEET_TITLE_MAX),
        discipline=UNKNOWN_DISCIPLINE,
        confidence=Confidence.LOW,
        method=DetectionMethod.FALLBACK,
    )


@dataclass
class SheetNumberRegistry:
    """
    Hands out sheet numbers that are unique (case-insensitive) within one set.

    First collision gets "-P<page>", later ones "-2", "-3", ... and when those
    run out the page-derived "PAGE-<n>" is used.
    """

    max_suffix: int = 99
    _taken: set[str] = field(default_factory=set)

    @classmethod
    def seeded(cls, existing: Iterable[str]) -> "SheetNumberRegistry":
        registry = cls()
        for number in existing:
            registry._taken.add(number.upper())
        return registry

    def _fit(self, base: str, suffix: str = "") -> str:
        return _clip(base, SHEET_NUMBER_MAX - len(suffix)) + suffix

    def _try(self, candidate: str) -> bool:
        key = candidate.upper()
        if key in self._taken:
            return False
        self._taken.add(key)
        return True

    def claim(self, sheet_number: str, page_number: int) -> str:
        suffixes = ["", f"-P{page_number}"]
        suffixes.extend(f"-{n}" for n in range(2, self.max_suffix + 1))
        for suffix in suffixes:
            candidate = self._fit(sheet_number, suffix)
            if self._try(candidate):
                return candidate

        candidate = f"PAGE-{page_number}"
        attempt = 1
        while not self._try(candidate):
            attempt += 1
            candidate = f"PAGE-{page_number}-{attempt}"
        return candidate

    def __contains__(self, sheet_number: str) -> bool:
        return sheet_number.upper() in self._taken
