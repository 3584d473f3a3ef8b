"""Persistent config overrides and run history using JSON files."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import ValidationError

from .config import CONFIG_KEYS, OrchestratorConfig
from .models import RunRecord


class Storage:
    """File-based storage under a data directory."""

    def __init__(self, data_dir: str = ".snapctl"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.runs_file = self.data_dir / "runs.json"
        self.config_file = self.data_dir / "config.json"

        # Initialize files if they don't exist
        if not self.runs_file.exists():
            self._write_json(self.runs_file, [])
        if not self.config_file.exists():
            self._write_json(self.config_file, {})

    def _write_json(self, file_path: Path, data: Any) -> None:
        """Write data to JSON file with atomic write."""
        temp_file = file_path.with_suffix(".tmp")
        with open(temp_file, "w") as f:
            json.dump(data, f, indent=2, default=str)
        temp_file.replace(file_path)

    def _read_json(self, file_path: Path, default: Any) -> Any:
        if not file_path.exists():
            return default
        with open(file_path, "r") as f:
            return json.load(f)

    # Config

    def get_overrides(self) -> Dict[str, Any]:
        return self._read_json(self.config_file, {})

    def get_config(self) -> OrchestratorConfig:
        """Stored overrides on top of environment and defaults."""
        return OrchestratorConfig(**self.get_overrides())

    def set_config_value(self, key: str, value: str) -> OrchestratorConfig:
        """Validate and persist one override. ``key`` is the dashed CLI name."""
        field = CONFIG_KEYS.get(key)
        if field is None:
            raise KeyError(key)
        overrides = self.get_overrides()
        overrides[field] = value
        try:
            config = OrchestratorConfig(**overrides)
        except ValidationError as e:
            raise ValueError(e.errors()[0]["msg"]) from e
        overrides[field] = getattr(config, field)
        self._write_json(self.config_file, overrides)
        return config

    def reset_config(self) -> None:
        self._write_json(self.config_file, {})

    # Run history

    def add_run(self, record: RunRecord) -> None:
        runs = self._read_json(self.runs_file, [])
        runs.append(record.model_dump(mode="json"))
        self._write_json(self.runs_file, runs)

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        for run_data in self._read_json(self.runs_file, []):
            if run_data["id"] == run_id:
                return RunRecord(**run_data)
        return None

    def get_runs(self, limit: Optional[int] = None) -> List[RunRecord]:
        """Most recent runs first."""
        runs = [RunRecord(**r) for r in reversed(self._read_json(self.runs_file, []))]
        return runs[:limit] if limit else runs
