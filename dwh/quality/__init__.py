"""
Data Quality Module
"""
from .validators import (
    QualityGate,
    QualityReport,
    RuleCategory,
    RuleSet,
    ValidationSeverity,
    Violation,
    check,
)

__all__ = [
    "QualityGate",
    "QualityReport",
    "RuleCategory",
    "RuleSet",
    "ValidationSeverity",
    "Violation",
    "check",
]
