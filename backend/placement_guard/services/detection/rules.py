"""
Content Policy Rule Table

Deterministic pattern rules for off-platform contact detection.
NO learned models here - every decision must be explainable to a
reviewer from the matched text and the table below.

Each category carries its own confidence arithmetic:
    confidence = min(cap, base + increment * (matches - 1))
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Pattern, Tuple


class Category(str, Enum):
    PHONE_NUMBER = "phone_number"
    EMAIL_ADDRESS = "email_address"
    EXTERNAL_PLATFORM = "external_platform"
    MEETUP_REQUEST = "meetup_request"
    BYPASS_INTENT = "bypass_intent"


@dataclass(frozen=True)
class CategoryRule:
    """One row of the rule table."""
    category: Category
    patterns: Tuple[Pattern, ...]
    base_confidence: float
    increment: float = 0.05
    cap: float = 1.0
    description: str = ""

    def confidence_for(self, match_count: int) -> float:
        if match_count <= 0:
            return 0.0
        raw = self.base_confidence + self.increment * (match_count - 1)
        return round(min(self.cap, raw), 4)


def _compile(*patterns: str) -> Tuple[Pattern, ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


# =============================================================================
# RULE TABLE
# =============================================================================

PHONE_RULE = CategoryRule(
    category=Category.PHONE_NUMBER,
    patterns=_compile(
        r"\+44\s?\(?0?\)?\s?7\d{3}[\s-]?\d{3}[\s-]?\d{3}",     # UK mobile, international
        r"\b07\d{3}[\s-]?\d{3}[\s-]?\d{3}\b",                   # UK mobile, national
        r"\+44\s?\(?0?\)?\s?[12]\d{2,3}[\s-]?\d{3}[\s-]?\d{3,4}",  # UK landline, international
        r"\b0[12]\d{2,3}[\s-]?\d{3}[\s-]?\d{3,4}\b",            # UK landline, national
    ),
    base_confidence=0.95,
    description="UK phone number shared in message",
)

EMAIL_RULE = CategoryRule(
    category=Category.EMAIL_ADDRESS,
    patterns=_compile(
        r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b",
        r"\b[A-Za-z0-9._%+-]+\s*[\(\[]\s*at\s*[\)\]]\s*[A-Za-z0-9-]+\s*[\(\[]\s*dot\s*[\)\]]\s*[A-Za-z]{2,}\b",
        r"\b[A-Za-z0-9._%+-]+\s+at\s+[A-Za-z0-9-]+\s+dot\s+(?:com|org|net|io|co\s+dot\s+uk|uk)\b",
    ),
    base_confidence=0.90,
    description="Email address shared in message",
)

PLATFORM_RULE = CategoryRule(
    category=Category.EXTERNAL_PLATFORM,
    patterns=_compile(
        r"\bwhat'?s\s?app\b",
        r"\b(?:telegram|discord|snapchat|skype|wechat|viber)\b",
        r"\bsignal\s+(?:app|me|messenger)\b",
        r"\b(?:instagram|facebook|linkedin|twitter)(?:\.com(?:/\S*)?)?\b",
    ),
    base_confidence=0.85,
    description="Reference to an external messaging or social platform",
)

MEETUP_RULE = CategoryRule(
    category=Category.MEETUP_REQUEST,
    patterns=_compile(
        r"\bmeet\s+(?:me\s+)?(?:up\s+)?(?:at|outside|off)\b",
        r"\bmeet\s+up\b",
        r"\b(?:grab|get)\s+(?:a\s+)?(?:coffee|drink)\b",
        r"\bmy\s+(?:office|place|house)\s+(?:instead|directly)\b",
    ),
    base_confidence=0.75,
    description="Request to meet away from the platform",
)

BYPASS_RULE = CategoryRule(
    category=Category.BYPASS_INTENT,
    patterns=_compile(
        r"\b(?:skip|bypass|avoid|go\s+around)\s+(?:the\s+|this\s+)?(?:platform|site|app|fees?|middleman)\b",
        r"\boutside\s+(?:of\s+)?(?:this|the)\s+(?:platform|site|app)\b",
        r"\boff[-\s]platform\b",
        r"\b(?:contact|call|text|email|message)\s+me\s+directly\b",
        r"\bdirectly\s+contact\b",
        r"\b(?:hire|employ|offer)\s+you\s+directly\b",
        r"\bno\s+(?:platform\s+|agency\s+)?fees?\b",
        r"\b(?:cheaper|free)\s+(?:way|method|route)\b",
        r"\bbefore\s+(?:anyone|they)\s+(?:finds?\s+out|notices?)\b",
        r"\bkeep\s+(?:this|it)\s+between\s+us\b",
    ),
    base_confidence=0.65,
    description="Urgency or explicit intent to bypass the platform",
)

RULE_TABLE: List[CategoryRule] = [
    PHONE_RULE,
    EMAIL_RULE,
    PLATFORM_RULE,
    MEETUP_RULE,
    BYPASS_RULE,
]

# Categories that signal explicit intent to take the hire off-platform
BYPASS_INTENT_CATEGORIES = frozenset({Category.BYPASS_INTENT})
