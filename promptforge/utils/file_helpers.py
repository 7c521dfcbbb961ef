"""File loading utilities for prompts and chain definitions."""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Tuple

import yaml

from ..core.chain import PromptChain
from ..core.models import PROMPT_FIELDS, PromptSpec, Stage


def _read_structured(path) -> Any:
    """Read a YAML or JSON file (JSON is valid YAML, but gets clearer errors)."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValueError(f"Invalid prompt file {path}: {e}") from e


def _write_structured(path: Path, payload: Any) -> None:
    if path.suffix.lower() == ".json":
        content = json.dumps(payload, indent=2, ensure_ascii=False)
    else:
        content = yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)
    path.write_text(content, encoding="utf-8")


def _string_map(data: Any, what: str) -> Dict[str, str]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{what}' must be a mapping of names to values")
    return {str(k): "" if v is None else str(v) for k, v in data.items()}


def load_prompt_file(path) -> Tuple[PromptSpec, Dict[str, str]]:
    """
    Load a single RICCE prompt and its variables.

    Accepts either the five fields at the top level or nested under
    ``prompt``, plus an optional ``variables`` mapping.
    """
    data = _read_structured(path)
    if not isinstance(data, dict):
        raise ValueError(f"Invalid prompt file {path}: expected a mapping")

    prompt_data = data.get("prompt", data)
    if not isinstance(prompt_data, dict):
        raise ValueError(f"Invalid prompt file {path}: 'prompt' must be a mapping")
    return PromptSpec.from_dict(prompt_data), _string_map(data.get("variables"), "variables")


def load_chain_file(path) -> PromptChain:
    """
    Load a chain definition.

    Example:
        variables:
          topic: bees
        stages:
          - name: Research
            instruction: "Summarize {{topic}}"
          - name: Campaign
            prompt:
              instruction: "Expand on {{output_1}}"
    """
    data = _read_structured(path)
    if not isinstance(data, dict):
        raise ValueError(f"Invalid chain file {path}: expected a mapping")

    raw_stages = data.get("stages")
    if not isinstance(raw_stages, list) or not raw_stages:
        raise ValueError(f"Invalid chain file {path}: 'stages' must be a non-empty list")

    stages = []
    for index, raw in enumerate(raw_stages, start=1):
        if not isinstance(raw, dict):
            raise ValueError(f"Invalid chain file {path}: stage {index} must be a mapping")
        prompt_data = raw.get("prompt", raw)
        if not isinstance(prompt_data, dict):
            raise ValueError(f"Invalid chain file {path}: stage {index} 'prompt' must be a mapping")
        stages.append(
            Stage(
                name=str(raw.get("name") or f"Stage {index}"),
                prompt=PromptSpec.from_dict(prompt_data),
            )
        )

    return PromptChain(stages=stages, variables=_string_map(data.get("variables"), "variables"))


def dump_prompt_file(path, prompt: PromptSpec, variables: Dict[str, str] = None) -> None:
    """Write a prompt (and optional variables) as YAML or JSON by extension."""
    path = Path(path)
    payload: Dict[str, Any] = {"prompt": prompt.to_dict()}
    if variables:
        payload["variables"] = dict(variables)
    _write_structured(path, payload)


def dump_chain_file(path, chain: PromptChain) -> None:
    """Write a chain definition that load_chain_file can read back."""
    path = Path(path)
    payload: Dict[str, Any] = {
        "variables": chain.variables,
        "stages": [{"name": stage.name, **stage.prompt.to_dict()} for stage in chain],
    }
    _write_structured(path, payload)


def parse_variable_options(options: Iterable[str]) -> Dict[str, str]:
    """Parse ``name=value`` command-line options into a mapping."""
    variables = {}
    for option in options:
        name, sep, value = option.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Invalid variable '{option}', expected name=value")
        variables[name.strip()] = value
    return variables


def prompt_field_lines(prompt: PromptSpec) -> Iterable[Tuple[str, str]]:
    """(field, value) pairs in canonical order."""
    return [(name, getattr(prompt, name)) for name in PROMPT_FIELDS]
