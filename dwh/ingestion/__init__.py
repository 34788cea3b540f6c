"""
Data Ingestion Module
"""
from .batch_loader import BatchFileConfig, BatchLoader, FileFormat, to_raw_frame

__all__ = [
    "BatchFileConfig",
    "BatchLoader",
    "FileFormat",
    "to_raw_frame",
]
