"""
Storage Module
"""
from .tables import LAYERS, MemorySink, ParquetSink, TableSink

__all__ = [
    "LAYERS",
    "MemorySink",
    "ParquetSink",
    "TableSink",
]
