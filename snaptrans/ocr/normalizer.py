"""Post-processing of raw OCR output.

Every stage is a plain function on strings so it can be tested on its own;
``OCRResultNormalizer`` chains them and re-scores the confidence.
"""

from __future__ import annotations

import math
import re
import unicodedata
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Sequence, Set

from ..models import OCRResult

CJK_RANGES = "぀-ヿ㐀-䶿一-鿿가-힯ｦ-ﾟ"

_SENTENCE_END = set(".!?:;。！？」』\"')")
_RUN_RE = re.compile(r"(.)\1{4,}")
_BLANK_RUN_RE = re.compile(r"\n(?:[ \t]*\n){3,}")
_SPACES_RE = re.compile(r"[ \t 　]+")
_CJK_CHAR_RE = re.compile(f"[{CJK_RANGES}]")
_SYMBOL_RE = re.compile(r"[^\w\s.,;:!?'\"()\-、。，！？「」『』（）]")
_TOKEN_STRIP = ".,;:!?'\"()[]{}<>、。，！？「」『』（）"

VALID_WORD_PATTERNS = (
    re.compile(r"^[A-Za-z]+$"),
    re.compile(f"^[{CJK_RANGES}]+$"),
    re.compile(r"^\d+$"),
    re.compile(r"^[A-Za-z0-9]+$"),
)


# Stage 1 ---------------------------------------------------------------

def normalize_unicode(text: str) -> str:
    """NFKC normalization; also folds full-width ASCII to half-width."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return unicodedata.normalize("NFKC", text)


# Stage 2 ---------------------------------------------------------------

def collapse_runs(text: str) -> str:
    """Shorten runs of five or more identical characters to three."""
    return _RUN_RE.sub(r"\1\1\1", text)


def strip_noise(text: str) -> str:
    """Drop symbol-only lines, shorten long character runs, cap blank lines at two."""
    lines = [line for line in text.split("\n") if not line.strip() or any(ch.isalnum() for ch in line)]
    text = collapse_runs("\n".join(lines))
    return _BLANK_RUN_RE.sub("\n\n\n", text)


# Stage 3 ---------------------------------------------------------------

@dataclass(frozen=True)
class CorrectionRule:
    """One misrecognition fix. The replacement must keep the match length."""

    name: str
    pattern: str
    replacement: str

    def compiled(self) -> "re.Pattern[str]":
        return re.compile(self.pattern)


DEFAULT_RULES: Sequence[CorrectionRule] = (
    CorrectionRule("pipe_to_I", r"(?<=[A-Za-z])\||\|(?=[A-Za-z])|(?<!\S)\|(?!\S)", "I"),
    CorrectionRule("leading_zero_to_O", r"(?<!\w)0(?=[A-Za-z]+\b)", "O"),
    CorrectionRule("zero_to_o_in_word", r"(?<=[a-z])0(?=[a-z])", "o"),
    CorrectionRule("one_to_l_in_word", r"(?<=[a-z])1(?=[a-z])", "l"),
    CorrectionRule("l_to_one_in_number", r"(?<=\d)[lI](?=\d)", "1"),
    CorrectionRule("O_to_zero_in_number", r"(?<=\d)O(?=\d)", "0"),
)


def apply_corrections(text: str, rules: Iterable[CorrectionRule] = DEFAULT_RULES) -> str:
    """Apply rules in order; a position fixed by an earlier rule is never touched again."""
    chars = list(text)
    corrected: Set[int] = set()
    for rule in rules:
        current = "".join(chars)
        for match in rule.compiled().finditer(current):
            span = range(match.start(), match.end())
            if any(i in corrected for i in span):
                continue
            replacement = match.expand(rule.replacement)
            if len(replacement) != len(span):
                raise ValueError(f"Correction rule {rule.name!r} must preserve length")
            chars[match.start():match.end()] = list(replacement)
            corrected.update(span)
    return "".join(chars)


# Stage 4 ---------------------------------------------------------------

def _is_cjk(ch: str) -> bool:
    return bool(_CJK_CHAR_RE.match(ch))


def _join_lines(prev: str, line: str) -> Optional[str]:
    """Return the merged line when ``line`` continues a sentence broken after ``prev``."""
    last, first = prev[-1], line[0]
    if last in _SENTENCE_END:
        return None
    if last == "-" and len(prev) > 1 and prev[-2].isalpha() and first.islower():
        return prev[:-1] + line
    if _is_cjk(last) and _is_cjk(first):
        return prev + line
    if first.islower():
        return prev + " " + line
    return None


def clean_whitespace(text: str) -> str:
    """Trim and collapse spaces per line, then rejoin lines broken mid-sentence."""
    out: List[str] = []
    for raw in text.split("\n"):
        line = _SPACES_RE.sub(" ", raw).strip()
        if out and out[-1] and line:
            merged = _join_lines(out[-1], line)
            if merged is not None:
                out[-1] = merged
                continue
        out.append(line)
    return "\n".join(out).strip()


# Stage 5 ---------------------------------------------------------------

SPECIAL_CHARACTERS = (
    (re.compile("[‘’‚‛′´`]"), "'"),
    (re.compile("[“”„‟″«»]"), '"'),
    # U+30FC (katakana long vowel) is not a dash.
    (re.compile("[‐‑‒–—―−﹘﹣]"), "-"),
    (re.compile("[…⋯]|\\.(?: \\.){2,}"), "..."),
    (re.compile("\\.{3,}"), "..."),
)


def normalize_special_characters(text: str) -> str:
    for pattern, replacement in SPECIAL_CHARACTERS:
        text = pattern.sub(replacement, text)
    return text


# Stage 6 ---------------------------------------------------------------

@dataclass(frozen=True)
class ScoringWeights:
    """Tunable thresholds and multipliers for confidence re-scoring."""

    long_text_chars: int = 100
    long_text_bonus: float = 1.1
    short_text_chars: int = 5
    short_text_penalty: float = 0.8
    min_meaningful_ratio: float = 0.7
    meaningful_penalty: float = 0.7
    max_symbol_ratio: float = 0.3
    symbol_penalty: float = 0.8
    min_valid_word_ratio: float = 0.6
    valid_word_penalty: float = 0.9


def is_valid_word(token: str) -> bool:
    word = token.strip(_TOKEN_STRIP)
    return len(word) >= 2 and any(p.match(word) for p in VALID_WORD_PATTERNS)


def rescore_confidence(text: str, confidence: float, weights: ScoringWeights = ScoringWeights()) -> float:
    """Adjust engine confidence by text-quality heuristics, clamped to [0, 1].

    Character ratios are measured over non-whitespace characters.
    """
    stripped = text.strip()
    if not stripped:
        return 0.0
    try:
        score = float(confidence)
    except (TypeError, ValueError):
        score = 0.0
    if math.isnan(score):
        score = 0.0

    if len(stripped) > weights.long_text_chars:
        score *= weights.long_text_bonus
    if len(stripped) < weights.short_text_chars:
        score *= weights.short_text_penalty

    visible = [ch for ch in stripped if not ch.isspace()]
    meaningful = sum(1 for ch in visible if ch.isalnum())
    symbols = sum(1 for ch in visible if _SYMBOL_RE.match(ch))
    if meaningful / len(visible) < weights.min_meaningful_ratio:
        score *= weights.meaningful_penalty
    if symbols / len(visible) > weights.max_symbol_ratio:
        score *= weights.symbol_penalty

    tokens = stripped.split()
    if tokens:
        valid = sum(1 for token in tokens if is_valid_word(token))
        if valid / len(tokens) < weights.min_valid_word_ratio:
            score *= weights.valid_word_penalty

    return min(1.0, max(0.0, score))


class OCRResultNormalizer:
    """Runs the cleanup stages in order and re-derives the confidence."""

    def __init__(
        self,
        rules: Sequence[CorrectionRule] = DEFAULT_RULES,
        weights: ScoringWeights = ScoringWeights(),
    ) -> None:
        self.rules = tuple(rules)
        self.weights = weights

    def normalize_text(self, text: str) -> str:
        text = normalize_unicode(text or "")
        text = strip_noise(text)
        text = apply_corrections(text, self.rules)
        text = clean_whitespace(text)
        # Folding quote and dash variants can form new runs.
        return collapse_runs(normalize_special_characters(text))

    def normalize(self, raw: OCRResult) -> OCRResult:
        text = self.normalize_text(raw.text)
        return replace(raw, text=text, confidence=rescore_confidence(text, raw.confidence, self.weights))
