"""
Pattern Detector

Stateless text classifier for platform-bypass content.
Produces violation categories, per-category confidence and an
overall block decision. Deterministic: the same text always yields
the same classification.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .rules import RULE_TABLE, BYPASS_INTENT_CATEGORIES, Category, CategoryRule

logger = logging.getLogger(__name__)

BLOCK_CONFIDENCE = 0.8
BLOCK_CATEGORY_COUNT = 3
REDACTION_TOKEN = "[REDACTED]"

Span = Tuple[int, int]


@dataclass
class CategoryFlag:
    """Matches for one category."""
    category: Category
    masked_matches: List[str]
    confidence: float
    spans: List[Span] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "masked_matches": self.masked_matches,
            "confidence": self.confidence,
        }


@dataclass
class Classification:
    """Output of classify()."""
    flags: List[CategoryFlag]
    confidence: float
    should_block: bool
    risk_level: str

    @property
    def categories(self) -> List[Category]:
        return [f.category for f in self.flags]

    @property
    def has_bypass_intent(self) -> bool:
        return any(f.category in BYPASS_INTENT_CATEGORIES for f in self.flags)

    @property
    def is_clean(self) -> bool:
        return not self.flags

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flags": [f.to_dict() for f in self.flags],
            "confidence": self.confidence,
            "should_block": self.should_block,
            "risk_level": self.risk_level,
        }


def mask_sensitive(text: str) -> str:
    """Mask a match for logging and evidence."""
    if "@" in text:
        return re.sub(r"[A-Za-z0-9]", "*", text)
    return re.sub(r"\d", "*", text)


def _merge_spans(spans: Sequence[Span]) -> List[Span]:
    merged: List[Span] = []
    for start, end in sorted(spans):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def risk_level_for(confidence: float, flag_count: int) -> str:
    if confidence >= 0.9 or flag_count >= 3:
        return "critical"
    if confidence >= 0.8 or flag_count >= 2:
        return "high"
    if confidence >= 0.6 or flag_count >= 1:
        return "medium"
    return "low"


class PatternDetector:
    """
    Runs the rule table over a message.

    Overlapping matches from different patterns of the same category
    count once, so "+44 7123 456789" is one phone number, not two.
    """

    def __init__(self, rules: Optional[Sequence[CategoryRule]] = None):
        self.rules = list(rules) if rules is not None else list(RULE_TABLE)

    def match_category(self, rule: CategoryRule, text: str) -> Optional[CategoryFlag]:
        """Evaluate one row of the rule table. None when nothing matched."""
        spans: List[Span] = []
        for pattern in rule.patterns:
            spans.extend(m.span() for m in pattern.finditer(text) if m.end() > m.start())
        spans = _merge_spans(spans)
        if not spans:
            return None
        return CategoryFlag(
            category=rule.category,
            masked_matches=[mask_sensitive(text[s:e]) for s, e in spans],
            confidence=rule.confidence_for(len(spans)),
            spans=spans,
        )

    def classify(self, text: str) -> Classification:
        flags: List[CategoryFlag] = []
        for rule in self.rules:
            flag = self.match_category(rule, text or "")
            if flag is not None:
                flags.append(flag)

        confidence = max((f.confidence for f in flags), default=0.0)
        should_block = confidence >= BLOCK_CONFIDENCE or len(flags) >= BLOCK_CATEGORY_COUNT

        result = Classification(
            flags=flags,
            confidence=confidence,
            should_block=should_block,
            risk_level=risk_level_for(confidence, len(flags)),
        )
        if flags:
            logger.info(
                f"Content flagged: categories={[f.category.value for f in flags]} "
                f"confidence={confidence} block={should_block}"
            )
        return result

    @staticmethod
    def redact(text: str, classification: Classification) -> str:
        """Replace every matched span with the redaction token."""
        spans = _merge_spans([s for f in classification.flags for s in f.spans])
        redacted = text
        for start, end in reversed(spans):
            redacted = redacted[:start] + REDACTION_TOKEN + redacted[end:]
        return redacted
