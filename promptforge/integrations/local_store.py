"""
Local JSON storage for prompt templates, variable scenarios and run history.

Each collection lives in its own JSON file under the storage directory:

    <storage_dir>/templates.json   saved RICCE prompts
    <storage_dir>/scenarios.json   named variable sets
    <storage_dir>/history.json     test/comparison runs, newest first

Writes are atomic (temp file + fsync + os.replace) so an interrupted write
never leaves a truncated file behind.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..core.errors import StorageError
from ..core.models import PromptHistoryItem, PromptSpec, SavedPrompt, VariableScenario

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

TEMPLATES_FILE = "templates.json"
SCENARIOS_FILE = "scenarios.json"
HISTORY_FILE = "history.json"


class LocalPromptStore:
    """File-backed library of templates, scenarios and history."""

    def __init__(self, storage_dir, history_limit: int = 50):
        self.storage_dir = Path(storage_dir).expanduser()
        self.history_limit = history_limit
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    # Templates

    def list_templates(self) -> List[SavedPrompt]:
        """Saved templates, most recently saved first."""
        templates = self._load(TEMPLATES_FILE, SavedPrompt)
        return sorted(templates, key=lambda t: t.timestamp, reverse=True)

    def save_template(self, name: str, prompt: PromptSpec) -> SavedPrompt:
        """Save a template, replacing any existing template with the same name."""
        if not name or not name.strip():
            raise ValueError("Template name is required")
        name = name.strip()
        templates = [t for t in self._load(TEMPLATES_FILE, SavedPrompt) if t.name != name]
        saved = SavedPrompt(name=name, data=prompt.to_dict())
        templates.append(saved)
        self._dump(TEMPLATES_FILE, templates)
        logger.info(f"Saved template '{name}' ({saved.id})")
        return saved

    def get_template(self, name_or_id: str) -> Optional[SavedPrompt]:
        for template in self._load(TEMPLATES_FILE, SavedPrompt):
            if template.id == name_or_id or template.name == name_or_id:
                return template
        return None

    def delete_template(self, name_or_id: str) -> bool:
        templates = self._load(TEMPLATES_FILE, SavedPrompt)
        remaining = [t for t in templates if t.id != name_or_id and t.name != name_or_id]
        if len(remaining) == len(templates):
            return False
        self._dump(TEMPLATES_FILE, remaining)
        return True

    # Scenarios

    def list_scenarios(self) -> List[VariableScenario]:
        return self._load(SCENARIOS_FILE, VariableScenario)

    def save_scenario(self, name: str, values: Dict[str, str]) -> VariableScenario:
        """Save a named variable set, replacing one with the same name."""
        if not name or not name.strip():
            raise ValueError("Scenario name is required")
        name = name.strip()
        scenarios = [s for s in self._load(SCENARIOS_FILE, VariableScenario) if s.name != name]
        scenario = VariableScenario(name=name, values=dict(values))
        scenarios.append(scenario)
        self._dump(SCENARIOS_FILE, scenarios)
        return scenario

    def get_scenario(self, name_or_id: str) -> Optional[VariableScenario]:
        for scenario in self._load(SCENARIOS_FILE, VariableScenario):
            if scenario.id == name_or_id or scenario.name == name_or_id:
                return scenario
        return None

    def delete_scenario(self, name_or_id: str) -> bool:
        scenarios = self._load(SCENARIOS_FILE, VariableScenario)
        remaining = [s for s in scenarios if s.id != name_or_id and s.name != name_or_id]
        if len(remaining) == len(scenarios):
            return False
        self._dump(SCENARIOS_FILE, remaining)
        return True

    # History

    def list_history(self) -> List[PromptHistoryItem]:
        """History entries, newest first."""
        return self._load(HISTORY_FILE, PromptHistoryItem)

    def add_history(self, item: PromptHistoryItem) -> PromptHistoryItem:
        """Prepend a history entry, keeping at most ``history_limit`` entries."""
        history = [item] + self._load(HISTORY_FILE, PromptHistoryItem)
        dropped = len(history) - self.history_limit
        if dropped > 0:
            logger.debug(f"Dropping {dropped} oldest history entries")
        self._dump(HISTORY_FILE, history[: self.history_limit])
        return item

    def delete_history(self, item_id: str) -> bool:
        history = self._load(HISTORY_FILE, PromptHistoryItem)
        remaining = [h for h in history if h.id != item_id]
        if len(remaining) == len(history):
            return False
        self._dump(HISTORY_FILE, remaining)
        return True

    def clear_history(self) -> None:
        path = self.storage_dir / HISTORY_FILE
        if path.exists():
            path.unlink()

    # Persistence

    def _load(self, filename: str, model_cls: Type[T]) -> List[T]:
        path = self.storage_dir / filename
        if not path.exists():
            return []
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read {path}: {e}")
            raise StorageError(f"Cannot read {path}: {e}") from e

        if not isinstance(payload, list):
            raise StorageError(f"Cannot read {path}: expected a JSON list")
        try:
            return [model_cls.model_validate(entry) for entry in payload]
        except ValidationError as e:
            raise StorageError(f"Invalid entry in {path}: {e}") from e

    def _dump(self, filename: str, items: List[BaseModel]) -> None:
        self.atomic_write_json(
            self.storage_dir / filename, [item.model_dump(mode="json") for item in items]
        )

    @staticmethod
    def atomic_write_json(path: Path, payload: Any) -> None:
        """Atomic write using temp file + fsync + os.replace."""
        tmp_path = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", delete=False, dir=path.parent, suffix=".tmp", encoding="utf-8"
            ) as tmp:
                tmp_path = Path(tmp.name)
                json.dump(payload, tmp, ensure_ascii=False, indent=2)
                tmp.flush()
                os.fsync(tmp.fileno())

            os.replace(tmp_path, path)
        except Exception as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            logger.error(f"Failed to write {path}: {e}")
            if isinstance(e, OSError):
                raise StorageError(f"Cannot write {path}: {e}") from e
            raise
        logger.debug(f"Atomically wrote {path}")
