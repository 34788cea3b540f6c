"""
Table Storage

The persistence layer is a pure sink: each stage hands it finished tables,
and every write replaces the whole table. Tables are addressed by layer
(bronze, silver, gold, quarantine, quality) and name.
"""

import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import polars as pl
import pyarrow.parquet as pq
import structlog

from dwh.errors import TableNotFoundError

logger = structlog.get_logger(__name__)

LAYERS = ("bronze", "silver", "gold", "quarantine", "quality")


class TableSink:
    """Interface for the tabular store behind the pipeline"""

    def write(self, layer: str, name: str, df: pl.DataFrame) -> None:
        raise NotImplementedError

    def read(self, layer: str, name: str) -> pl.DataFrame:
        raise NotImplementedError

    def exists(self, layer: str, name: str) -> bool:
        raise NotImplementedError

    def row_count(self, layer: str, name: str) -> Optional[int]:
        """Rows currently stored, or None when the table was never written"""
        if not self.exists(layer, name):
            return None
        return self.read(layer, name).height

    def tables(self, layer: str) -> List[str]:
        raise NotImplementedError

    @staticmethod
    def _check_layer(layer: str) -> None:
        if layer not in LAYERS:
            raise ValueError(f"Unknown layer: {layer}")


class MemorySink(TableSink):
    """In-process sink, used by tests and dry runs"""

    def __init__(self):
        self._tables: Dict[Tuple[str, str], pl.DataFrame] = {}

    def write(self, layer: str, name: str, df: pl.DataFrame) -> None:
        self._check_layer(layer)
        self._tables[(layer, name)] = df.clone()
        logger.debug("Table replaced", layer=layer, table=name, rows=df.height)

    def read(self, layer: str, name: str) -> pl.DataFrame:
        try:
            return self._tables[(layer, name)].clone()
        except KeyError:
            raise TableNotFoundError(layer, name) from None

    def exists(self, layer: str, name: str) -> bool:
        return (layer, name) in self._tables

    def tables(self, layer: str) -> List[str]:
        return sorted(name for lyr, name in self._tables if lyr == layer)


class ParquetSink(TableSink):
    """
    One Parquet file per table under ``<root>/<layer>/<name>.parquet``.

    Writes go to a temporary file in the same directory and are renamed into
    place, so readers never observe a half-written table.
    """

    def __init__(self, root: Union[str, Path], compression: str = "zstd"):
        self.root = Path(root)
        self.compression = compression

    def _path(self, layer: str, name: str) -> Path:
        self._check_layer(layer)
        return self.root / layer / f"{name}.parquet"

    def write(self, layer: str, name: str, df: pl.DataFrame) -> None:
        path = self._path(layer, name)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        os.close(fd)
        try:
            df.write_parquet(tmp_name, compression=self.compression)
            os.replace(tmp_name, path)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.info(f"Written {df.height} rows to {path}", layer=layer, table=name)

    def read(self, layer: str, name: str) -> pl.DataFrame:
        path = self._path(layer, name)
        if not path.exists():
            raise TableNotFoundError(layer, name)
        return pl.read_parquet(path)

    def exists(self, layer: str, name: str) -> bool:
        return self._path(layer, name).exists()

    def row_count(self, layer: str, name: str) -> Optional[int]:
        path = self._path(layer, name)
        if not path.exists():
            return None
        # footer only, no need to load the table
        return pq.ParquetFile(path).metadata.num_rows

    def tables(self, layer: str) -> List[str]:
        self._check_layer(layer)
        directory = self.root / layer
        if not directory.exists():
            return []
        return sorted(p.stem for p in directory.glob("*.parquet"))
