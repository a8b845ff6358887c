"""Content policy detection."""
from .rules import Category, CategoryRule, RULE_TABLE
from .pattern_detector import PatternDetector, Classification, CategoryFlag

__all__ = [
    "Category",
    "CategoryRule",
    "RULE_TABLE",
    "PatternDetector",
    "Classification",
    "CategoryFlag",
]
