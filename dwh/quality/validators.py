"""
Data Validation Module

Rule-based quality gate run after the Silver and the Gold builds.

The gate is advisory: rules never raise and never stop the batch. Each rule
returns violations carrying the rule name, the table, the offending key(s)
and a readable description; a rule that errors is itself reported as a
violation.

Rule categories:
- Row-count floor against the previous run (warning)
- Null checks on required columns
- Duplicate checks on natural/business keys
- Enumerated-value membership
- Referential integrity
- Derived-value consistency
- Malformed values and identity conflicts recorded during cleansing
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import polars as pl
import structlog

from dwh.config import get_settings

logger = structlog.get_logger(__name__)


class ValidationSeverity(str, Enum):
    """Severity levels for violations"""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class RuleCategory(str, Enum):
    """What kind of defect a rule detects"""
    ROW_COUNT = "row_count"
    NOT_NULL = "not_null"
    DUPLICATE = "duplicate"
    ENUM = "enum"
    REFERENTIAL = "referential"
    CONSISTENCY = "consistency"
    MALFORMED_VALUE = "malformed_value"
    IDENTITY_CONFLICT = "identity_conflict"
    RULE_ERROR = "rule_error"


@dataclass(frozen=True)
class Violation:
    """A single data-quality defect"""
    rule: str
    category: RuleCategory
    table: str
    keys: Dict[str, Any]
    description: str
    severity: ValidationSeverity = ValidationSeverity.ERROR

    def to_record(self) -> Dict[str, Any]:
        return {
            "rule": self.rule,
            "category": self.category.value,
            "severity": self.severity.value,
            "table": self.table,
            "keys": ", ".join(f"{k}={v}" for k, v in self.keys.items()),
            "description": self.description,
        }


Rule = Callable[[pl.DataFrame, str], List[Violation]]


def _row_keys(row: Dict[str, Any], key_columns: Sequence[str]) -> Dict[str, Any]:
    return {k: row.get(k) for k in key_columns}


class RuleSet:
    """
    Ordered collection of quality rules for one table.

    Rules are added through the builder methods, each returning the rule set
    so they can be chained:

        rules = (
            RuleSet(key_columns=["customer_id"])
            .add_not_null_check("customer_number")
            .add_unique_check(["customer_id"])
            .add_enum_check("gender", ["Male", "Female", "Unknown"])
        )
        violations = check(df, rules, table="silver.crm_cust_info")
    """

    def __init__(
        self,
        key_columns: Optional[Sequence[str]] = None,
        max_violations_per_rule: Optional[int] = None,
    ):
        self.key_columns = list(key_columns or [])
        self.max_violations_per_rule = (
            max_violations_per_rule
            if max_violations_per_rule is not None
            else get_settings().quality.max_violations_per_rule
        )
        self._rules: List[tuple] = []

    def __len__(self) -> int:
        return len(self._rules)

    @property
    def rules(self) -> List[tuple]:
        return list(self._rules)

    def add_rule(self, name: str, category: RuleCategory, func: Rule) -> "RuleSet":
        """Register a custom rule"""
        self._rules.append((name, category, func))
        return self

    def _keys(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return _row_keys(row, self.key_columns)

    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "RuleSet":
        """Every row must carry a value in ``column``"""
        name = f"not_null_{column}"

        def rule(df: pl.DataFrame, table: str) -> List[Violation]:
            offending = df.with_row_index("row").filter(pl.col(column).is_null())
            return [
                Violation(
                    rule=name,
                    category=RuleCategory.NOT_NULL,
                    table=table,
                    keys=self._keys(row) or {"row": row["row"]},
                    description=f"Required column '{column}' is null",
                    severity=severity,
                )
                for row in offending.iter_rows(named=True)
            ]

        return self.add_rule(name, RuleCategory.NOT_NULL, rule)

    def add_unique_check(
        self,
        columns: Sequence[str],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "RuleSet":
        """The combination of ``columns`` must identify at most one row"""
        columns = list(columns)
        name = f"unique_{'_'.join(columns)}"

        def rule(df: pl.DataFrame, table: str) -> List[Violation]:
            duplicates = (
                df.filter(pl.all_horizontal([pl.col(c).is_not_null() for c in columns]))
                .group_by(columns, maintain_order=True)
                .agg(pl.len().alias("occurrences"))
                .filter(pl.col("occurrences") > 1)
            )
            return [
                Violation(
                    rule=name,
                    category=RuleCategory.DUPLICATE,
                    table=table,
                    keys=_row_keys(row, columns),
                    description=f"Key appears {row['occurrences']} times",
                    severity=severity,
                )
                for row in duplicates.iter_rows(named=True)
            ]

        return self.add_rule(name, RuleCategory.DUPLICATE, rule)

    def add_enum_check(
        self,
        column: str,
        allowed_values: List[Any],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "RuleSet":
        """Values must belong to a fixed enumeration; null counts as outside it"""
        name = f"enum_{column}"

        def rule(df: pl.DataFrame, table: str) -> List[Violation]:
            invalid = df.filter(
                ~pl.col(column).is_in(allowed_values) | pl.col(column).is_null()
            )
            return [
                Violation(
                    rule=name,
                    category=RuleCategory.ENUM,
                    table=table,
                    keys=self._keys(row),
                    description=f"'{row[column]}' is not one of {allowed_values}",
                    severity=severity,
                )
                for row in invalid.iter_rows(named=True)
            ]

        return self.add_rule(name, RuleCategory.ENUM, rule)

    def add_referential_integrity_check(
        self,
        column: str,
        reference_df: pl.DataFrame,
        reference_column: str,
        reference_table: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "RuleSet":
        """Every non-null value of ``column`` must exist in the reference table"""
        name = f"ref_integrity_{column}"
        reference = reference_df.select(pl.col(reference_column).alias(column)).unique()

        def rule(df: pl.DataFrame, table: str) -> List[Violation]:
            orphans = df.filter(pl.col(column).is_not_null()).join(
                reference, on=column, how="anti"
            )
            return [
                Violation(
                    rule=name,
                    category=RuleCategory.REFERENTIAL,
                    table=table,
                    keys=self._keys(row) or {column: row[column]},
                    description=f"{column}={row[column]} has no match in {reference_table}",
                    severity=severity,
                )
                for row in orphans.iter_rows(named=True)
            ]

        return self.add_rule(name, RuleCategory.REFERENTIAL, rule)

    def add_referential_gap_report(
        self,
        unresolved: pl.DataFrame,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "RuleSet":
        """One violation per sales line the fact builder had to exclude"""
        name = "referential_gap"

        def rule(df: pl.DataFrame, table: str) -> List[Violation]:
            return [
                Violation(
                    rule=name,
                    category=RuleCategory.REFERENTIAL,
                    table=table,
                    keys={
                        "order_number": row["order_number"],
                        "product_number": row["product_number"],
                        "customer_id": row["customer_id"],
                    },
                    description=f"Sales line excluded: unresolved {row['missing']}",
                    severity=severity,
                )
                for row in unresolved.iter_rows(named=True)
            ]

        return self.add_rule(name, RuleCategory.REFERENTIAL, rule)

    def add_consistency_check(
        self,
        name: str,
        violated: pl.Expr,
        description: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "RuleSet":
        """Rows where the boolean expression ``violated`` is true break a derived-value rule"""

        def rule(df: pl.DataFrame, table: str) -> List[Violation]:
            offending = df.filter(violated.fill_null(False))
            return [
                Violation(
                    rule=name,
                    category=RuleCategory.CONSISTENCY,
                    table=table,
                    keys=self._keys(row),
                    description=description,
                    severity=severity,
                )
                for row in offending.iter_rows(named=True)
            ]

        return self.add_rule(name, RuleCategory.CONSISTENCY, rule)

    def add_flag_check(
        self,
        flags_column: str = "quality_flags",
        severity: ValidationSeverity = ValidationSeverity.WARNING,
    ) -> "RuleSet":
        """Report every quality flag raised while cleansing a row"""
        name = "quality_flags"

        def rule(df: pl.DataFrame, table: str) -> List[Violation]:
            flagged = df.select(
                *[pl.col(c) for c in self.key_columns],
                pl.col(flags_column),
            ).explode(flags_column).filter(pl.col(flags_column).is_not_null())
            return [
                Violation(
                    rule=row[flags_column],
                    category=_flag_category(row[flags_column]),
                    table=table,
                    keys=self._keys(row),
                    description=f"Row flagged during cleansing: {row[flags_column]}",
                    severity=severity,
                )
                for row in flagged.iter_rows(named=True)
            ]

        return self.add_rule(name, RuleCategory.MALFORMED_VALUE, rule)

    def add_identity_conflict_check(
        self,
        candidates: pl.DataFrame,
        key: str,
        attributes: Sequence[str],
        tolerance: int = 1,
        ignore_values: Sequence[Any] = ("Unknown",),
        severity: ValidationSeverity = ValidationSeverity.WARNING,
    ) -> "RuleSet":
        """
        Records sharing ``key`` must agree on ``attributes``.

        ``candidates`` holds every version of every record (survivors and
        superseded duplicates). More than ``tolerance`` distinct known values
        for an attribute is a conflict.
        """
        name = "identity_conflict"

        def rule(df: pl.DataFrame, table: str) -> List[Violation]:
            violations = []
            for attribute in attributes:
                conflicts = (
                    candidates.filter(
                        pl.col(attribute).is_not_null()
                        & ~pl.col(attribute).is_in(list(ignore_values))
                    )
                    .group_by(key, maintain_order=True)
                    .agg(pl.col(attribute).unique(maintain_order=True).alias("values"))
                    .filter(pl.col("values").list.len() > tolerance)
                )
                violations.extend(
                    Violation(
                        rule=f"{name}_{attribute}",
                        category=RuleCategory.IDENTITY_CONFLICT,
                        table=table,
                        keys={key: row[key]},
                        description=f"Duplicate records disagree on {attribute}: {row['values']}",
                        severity=severity,
                    )
                    for row in conflicts.iter_rows(named=True)
                )
            return violations

        return self.add_rule(name, RuleCategory.IDENTITY_CONFLICT, rule)

    def add_row_count_floor(
        self,
        previous_count: Optional[int],
        floor_ratio: Optional[float] = None,
    ) -> "RuleSet":
        """Warn when the table shrank below ``floor_ratio`` of the previous run"""
        name = "row_count_floor"
        ratio = floor_ratio if floor_ratio is not None else get_settings().quality.row_count_floor_ratio

        def rule(df: pl.DataFrame, table: str) -> List[Violation]:
            if previous_count is None:
                return []
            floor = int(previous_count * ratio)
            if df.height >= floor:
                return []
            return [
                Violation(
                    rule=name,
                    category=RuleCategory.ROW_COUNT,
                    table=table,
                    keys={"rows": df.height, "previous_rows": previous_count},
                    description=f"Row count {df.height} is below the floor of {floor} ({ratio:.0%} of previous run)",
                    severity=ValidationSeverity.WARNING,
                )
            ]

        return self.add_rule(name, RuleCategory.ROW_COUNT, rule)


def _flag_category(flag: str) -> RuleCategory:
    if flag.startswith("malformed_") or flag.startswith("missing_"):
        return RuleCategory.MALFORMED_VALUE
    return RuleCategory.CONSISTENCY


def check(table: pl.DataFrame, rule_set: RuleSet, table_name: str = "table") -> List[Violation]:
    """
    Run every rule of ``rule_set`` against ``table``.

    Never raises: a failing rule is reported as a ``rule_error`` violation.
    Each rule keeps at most ``max_violations_per_rule`` violations and adds
    one summary violation for the remainder.
    """
    violations: List[Violation] = []
    cap = rule_set.max_violations_per_rule

    for name, category, rule in rule_set.rules:
        try:
            found = rule(table, table_name)
        except Exception as e:
            logger.error("Quality rule failed", rule=name, table=table_name, error=str(e))
            violations.append(
                Violation(
                    rule=name,
                    category=RuleCategory.RULE_ERROR,
                    table=table_name,
                    keys={},
                    description=f"Check failed with error: {e}",
                )
            )
            continue

        if cap and len(found) > cap:
            dropped = len(found) - cap
            found = found[:cap] + [
                Violation(
                    rule=name,
                    category=category,
                    table=table_name,
                    keys={"suppressed": dropped},
                    description=f"{dropped} further violations of {name} not listed",
                    severity=found[cap].severity,
                )
            ]

        if found:
            logger.warning(
                f"Validation failed: {name}",
                table=table_name,
                violations=len(found),
            )
        violations.extend(found)

    return violations


@dataclass
class QualityReport:
    """Violations found by one gate run"""
    stage: str
    violations: List[Violation] = field(default_factory=list)
    tables_checked: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @property
    def passed(self) -> bool:
        return not self.violations

    @property
    def error_count(self) -> int:
        return sum(1 for v in self.violations if v.severity == ValidationSeverity.ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for v in self.violations if v.severity == ValidationSeverity.WARNING)

    def by_category(self, category: RuleCategory) -> List[Violation]:
        return [v for v in self.violations if v.category == category]

    def by_rule(self, rule: str) -> List[Violation]:
        return [v for v in self.violations if v.rule == rule]

    def to_frame(self) -> pl.DataFrame:
        """Violations as a table, ready for the sink"""
        schema = {
            "rule": pl.Utf8,
            "category": pl.Utf8,
            "severity": pl.Utf8,
            "table": pl.Utf8,
            "keys": pl.Utf8,
            "description": pl.Utf8,
        }
        return pl.DataFrame([v.to_record() for v in self.violations], schema=schema)


class QualityGate:
    """
    Runs rule sets over a stage's tables and collects one report.

    Example:
        gate = QualityGate("silver")
        gate.run(df, rules, "silver.crm_cust_info")
        report = gate.report()
    """

    def __init__(self, stage: str):
        self._report = QualityReport(stage=stage)

    def run(self, table: pl.DataFrame, rule_set: RuleSet, table_name: str) -> List[Violation]:
        logger.info(
            f"Running {len(rule_set)} quality rules",
            table=table_name,
            rows=table.height,
        )
        violations = check(table, rule_set, table_name)
        self._report.violations.extend(violations)
        self._report.tables_checked.append(table_name)
        return violations

    def report(self) -> QualityReport:
        self._report.completed_at = datetime.now(timezone.utc)
        logger.info(
            f"Quality gate complete: {self._report.stage}",
            tables=len(self._report.tables_checked),
            errors=self._report.error_count,
            warnings=self._report.warning_count,
        )
        return self._report
