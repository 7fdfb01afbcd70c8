"""
Data persistence utilities.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from pydantic import BaseModel

TABLES = ("servers", "users", "plans", "subscriptions")


class DataPersistence:
    """Handles loading and saving the JSON data file."""

    @staticmethod
    def empty() -> dict[str, list[dict[str, Any]]]:
        return {table: [] for table in TABLES}

    @staticmethod
    def load(file_path: Path) -> dict[str, list[dict[str, Any]]]:
        """Load all tables from file. A missing file means no data yet."""
        try:
            with file_path.open() as f:
                data = json.load(f)
        except FileNotFoundError:
            return DataPersistence.empty()
        for table in TABLES:
            data.setdefault(table, [])
        return data

    @staticmethod
    def save(file_path: Path, tables: dict[str, list[BaseModel]]) -> None:
        """Rewrite the whole file through a temp file in the same directory."""
        data = {
            name: [record.model_dump(mode="json") for record in records]
            for name, records in tables.items()
        }
        file_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=file_path.parent, prefix=f".{file_path.name}.")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, file_path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
