"""
Raw Batch Loader

Reads one extract per source entity from a directory and hands the
pipeline untyped frames, exactly as extracted. Every column is read as a
string; typing is the cleansing stage's job.

Expected layout (entity names match ``SOURCE_ENTITIES``):

    <raw_path>/crm_cust_info.csv
    <raw_path>/crm_prd_info.csv
    ...
    <raw_path>/erp_px_cat_g1v2.csv
"""

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Union

import polars as pl
import structlog

from dwh.config import get_settings
from dwh.transformation.cleaners import SOURCE_ENTITIES

logger = structlog.get_logger(__name__)


class FileFormat(str, Enum):
    """Supported file formats"""
    CSV = "csv"
    JSON = "json"
    PARQUET = "parquet"


@dataclass
class BatchFileConfig:
    """Configuration for reading raw extracts"""
    file_format: FileFormat = FileFormat.CSV
    delimiter: str = ","
    encoding: str = "utf8"
    null_values: List[str] = field(default_factory=lambda: ["NULL", "null"])


@dataclass
class LoadedFile:
    """Audit record of one extract read into the batch"""
    entity: str
    file_path: str
    rows: int
    file_hash: str


def to_raw_frame(rows: Iterable[Mapping[str, Optional[str]]], columns: Optional[List[str]] = None) -> pl.DataFrame:
    """
    Build an untyped raw frame from row mappings.

    Values are stringified; missing keys become nulls.
    """
    rows = list(rows)
    if columns is None:
        columns = []
        for row in rows:
            columns.extend(c for c in row if c not in columns)
    data = {
        c: [None if row.get(c) is None else str(row.get(c)) for row in rows]
        for c in columns
    }
    return pl.DataFrame(data, schema={c: pl.Utf8 for c in columns})


class BatchLoader:
    """
    Loads a full raw batch from a directory.

    Example:
        loader = BatchLoader()
        batch = loader.load_directory("data/raw")
    """

    def __init__(self, config: Optional[BatchFileConfig] = None):
        self.config = config or BatchFileConfig(
            file_format=FileFormat(get_settings().data_lake.raw_format)
        )
        self.loaded: List[LoadedFile] = []

    def _compute_file_hash(self, file_path: Path) -> str:
        """Compute MD5 hash of file for the audit trail"""
        hash_md5 = hashlib.md5()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(4096), b""):
                hash_md5.update(chunk)
        return hash_md5.hexdigest()

    def _read_csv(self, path: Path) -> pl.DataFrame:
        return pl.read_csv(
            path,
            separator=self.config.delimiter,
            encoding=self.config.encoding,
            null_values=self.config.null_values,
            infer_schema_length=0,
        )

    def _read_json(self, path: Path) -> pl.DataFrame:
        return pl.read_json(path).select(pl.all().cast(pl.Utf8))

    def _read_parquet(self, path: Path) -> pl.DataFrame:
        return pl.read_parquet(path).select(pl.all().cast(pl.Utf8))

    def read_file(self, path: Union[str, Path]) -> pl.DataFrame:
        """Read one extract with every column as a string"""
        readers = {
            FileFormat.CSV: self._read_csv,
            FileFormat.JSON: self._read_json,
            FileFormat.PARQUET: self._read_parquet,
        }
        return readers[self.config.file_format](Path(path))

    def load_directory(self, directory: Union[str, Path, None] = None) -> Dict[str, pl.DataFrame]:
        """
        Read every source entity found in ``directory``.

        Entities without a file are left out of the batch; the pipeline's
        structural check reports them.
        """
        directory = Path(directory or get_settings().data_lake.raw_path)
        extension = f".{self.config.file_format.value}"
        batch: Dict[str, pl.DataFrame] = {}

        for entity in SOURCE_ENTITIES:
            path = directory / f"{entity}{extension}"
            if not path.exists():
                logger.warning("Raw extract not found", entity=entity, file=str(path))
                continue

            df = self.read_file(path)
            batch[entity] = df
            self.loaded.append(
                LoadedFile(
                    entity=entity,
                    file_path=str(path),
                    rows=df.height,
                    file_hash=self._compute_file_hash(path),
                )
            )
            logger.info(f"Read {df.height} rows from file", entity=entity, file=str(path))

        return batch
