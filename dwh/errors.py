"""
Pipeline Exceptions

Only structural problems abort a run. Row-level defects never raise: they
become quality flags on the row and violations in the quality report.
"""

from typing import Dict, List


class PipelineError(Exception):
    """Base class for fatal pipeline errors"""


class StructuralFailure(PipelineError):
    """Required raw columns (or whole entities) are absent from the input batch"""

    def __init__(self, missing: Dict[str, List[str]]):
        self.missing = missing
        details = "; ".join(
            f"{entity}: {', '.join(columns)}" for entity, columns in sorted(missing.items())
        )
        super().__init__(f"Raw batch is missing required columns ({details})")


class TableNotFoundError(PipelineError):
    """A stage asked the sink for a table that has not been written"""

    def __init__(self, layer: str, table: str):
        self.layer = layer
        self.table = table
        super().__init__(f"Table {layer}.{table} does not exist; run the upstream stage first")
