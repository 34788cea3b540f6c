"""
Data Transformation Module
"""
from .cleaners import SOURCE_ENTITIES, cleanse, validate_structure
from .conformance import ConformedModel, conform
from .dimensions import CUSTOMER_DIMENSION, PRODUCT_DIMENSION, DimensionSpec, build_dimension
from .facts import FactBuild, build_fact
from .transformers import MedallionPipeline, StageResult

__all__ = [
    "SOURCE_ENTITIES",
    "cleanse",
    "validate_structure",
    "ConformedModel",
    "conform",
    "CUSTOMER_DIMENSION",
    "PRODUCT_DIMENSION",
    "DimensionSpec",
    "build_dimension",
    "FactBuild",
    "build_fact",
    "MedallionPipeline",
    "StageResult",
]
