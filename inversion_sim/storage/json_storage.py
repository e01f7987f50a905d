"""
JSON files for run records, stores and sweep reports.

Everything the simulator persists is small structured data (config dicts,
state dicts, store entries), so plain JSON is enough; `.json.gz` is used
when a caller asks for compression, e.g. for long trajectories.
"""

from __future__ import annotations
import gzip
import json
from dataclasses import asdict, is_dataclass
from enum import Enum
from pathlib import Path
from typing import IO, Any, List, Optional, Union

import numpy as np


SUFFIXES = ("", ".json", ".json.gz")


class NumpyEncoder(json.JSONEncoder):
    """Encoder for numpy scalars/arrays, enums and record objects."""

    def default(self, obj):
        if isinstance(obj, np.generic):
            return obj.item()
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, Enum):
            return obj.value
        # RunConfig, State, Event, TopKEntry...
        to_dict = getattr(obj, "to_dict", None)
        if callable(to_dict):
            return to_dict()
        if is_dataclass(obj) and not isinstance(obj, type):
            return asdict(obj)
        return super().default(obj)


def _open(path: Path, mode: str) -> IO[str]:
    if path.name.endswith(".gz"):
        return gzip.open(path, mode + "t", encoding="utf-8")
    return open(path, mode, encoding="utf-8")


def write_json(path: Union[str, Path], data: Any, indent: Optional[int] = 2) -> Path:
    """Write `data` to exactly `path`; gzip if the name ends in .gz."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with _open(path, "w") as f:
        json.dump(data, f, cls=NumpyEncoder, indent=indent)
    return path


def read_json(path: Union[str, Path]) -> Any:
    """Read the JSON document at exactly `path` (gzipped if it ends in .gz)."""
    with _open(Path(path), "r") as f:
        return json.load(f)


class JSONStorage:
    """
    A directory of JSON documents addressed by name.

    Names are given without extension; `load`, `exists` and `delete`
    accept a bare name, `name.json` or `name.json.gz`.
    """

    def __init__(self, base_path: Union[str, Path]):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str, compress: bool = False) -> Path:
        return self.base_path / (name + (".json.gz" if compress else ".json"))

    def resolve(self, name: str) -> Optional[Path]:
        """Existing file for `name`, or None."""
        for suffix in SUFFIXES:
            candidate = self.base_path / f"{name}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    def save(
        self,
        data: Any,
        name: str,
        compress: bool = False,
        indent: Optional[int] = 2,
    ) -> Path:
        """
        Write `data` as `<name>.json` (or `.json.gz`).

        Args:
            data: JSON-compatible data; numpy values and objects with
                `to_dict()` are converted by NumpyEncoder
            name: File name without extension
            compress: gzip the output
            indent: Passed to json.dump; None writes a compact file

        Returns:
            Path written
        """
        return write_json(self.path_for(name, compress), data, indent=indent)

    def load(self, name: str) -> Any:
        path = self.resolve(name)
        if path is None:
            raise FileNotFoundError(f"No JSON file for '{name}' in {self.base_path}")
        return read_json(path)

    def list_files(self, pattern: str = "*.json*") -> List[Path]:
        return sorted(self.base_path.glob(pattern))

    def exists(self, name: str) -> bool:
        return self.resolve(name) is not None

    def delete(self, name: str) -> bool:
        """Remove the file for `name`; False if there was none."""
        path = self.resolve(name)
        if path is None:
            return False
        path.unlink()
        return True
