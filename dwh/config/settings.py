"""
CRM/ERP Sales Warehouse
Centralized Configuration Management

Pydantic settings with environment variable support, validation and type
safety. Every section can be overridden through the environment or a
``.env`` file.
"""

from datetime import date
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DataLakeSettings(BaseSettings):
    """Data Lake Storage Configuration"""

    model_config = SettingsConfigDict(env_prefix="DATA_")

    lake_path: str = Field(default="./data/lake", description="Root of the bronze/silver/gold lake")
    raw_path: str = Field(default="./data/raw", description="Directory holding one raw extract per entity")
    raw_format: str = Field(default="csv", description="File format of the raw extracts")

    @property
    def lake_root(self) -> Path:
        return Path(self.lake_path)


class PipelineSettings(BaseSettings):
    """Batch execution configuration"""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    max_workers: int = Field(default=4, description="Threads used to cleanse entities concurrently")
    as_of_date: Optional[date] = Field(
        default=None,
        description="Reference date for date plausibility checks; today when unset",
    )

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_workers must be at least 1")
        return v


class QualitySettings(BaseSettings):
    """Quality Gate Configuration"""

    model_config = SettingsConfigDict(env_prefix="QUALITY_")

    row_count_floor_ratio: float = Field(
        default=0.9,
        description="Warn when a table shrinks below this share of the previous run",
    )
    max_violations_per_rule: int = Field(
        default=500,
        description="Violations kept per rule before the rest are summarized",
    )
    identity_conflict_attributes: List[str] = Field(
        default=["gender", "marital_status"],
        description="Customer attributes that must agree across duplicate records",
    )
    identity_conflict_tolerance: int = Field(
        default=1,
        description="Distinct known values tolerated per attribute for one customer",
    )
    min_birth_year: int = Field(default=1924, description="Birthdates before this year are flagged")

    @field_validator("row_count_floor_ratio")
    @classmethod
    def validate_ratio(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("row_count_floor_ratio must be between 0 and 1")
        return v


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="sales-warehouse", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    version: str = Field(default="1.0.0", description="Application version")

    data_lake: DataLakeSettings = Field(default_factory=DataLakeSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    quality: QualitySettings = Field(default_factory=QualitySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
