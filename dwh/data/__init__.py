"""
Data Generation Module
"""
from .generators import RawBatchGenerator

__all__ = [
    "RawBatchGenerator",
]
