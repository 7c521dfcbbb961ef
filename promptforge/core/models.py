"""
Shared data models for PromptForge.

These models define the prompt, stage and result structures used by the
chain engine, the prompt tester, the refiner and the local store.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .errors import ChainExecutionError, InvalidFieldError, StageStateError

PROMPT_FIELDS = ("role", "instruction", "context", "constraints", "evaluation")


def new_id() -> str:
    """Generate an opaque unique identifier."""
    return uuid.uuid4().hex


class StageStatus(str, Enum):
    """Lifecycle states of a chain stage."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class RunState(str, Enum):
    """States of the chain executor."""
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class PromptSpec:
    """A RICCE prompt. All five fields are always present."""
    role: str = ""
    instruction: str = ""
    context: str = ""
    constraints: str = ""
    evaluation: str = ""

    def __post_init__(self):
        for name in PROMPT_FIELDS:
            value = getattr(self, name)
            setattr(self, name, "" if value is None else str(value))

    def get_field(self, name: str) -> str:
        check_field_name(name)
        return getattr(self, name)

    def with_field(self, name: str, value: str) -> "PromptSpec":
        """Return a copy with one field replaced."""
        check_field_name(name)
        data = self.to_dict()
        data[name] = value
        return PromptSpec(**data)

    def to_dict(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in PROMPT_FIELDS}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PromptSpec":
        """Build a PromptSpec, ignoring unknown keys and filling missing ones."""
        data = data or {}
        return cls(**{name: data.get(name, "") for name in PROMPT_FIELDS})


def check_field_name(name: str) -> None:
    if name not in PROMPT_FIELDS:
        raise InvalidFieldError(
            f"Unknown prompt field '{name}'. Expected one of: {', '.join(PROMPT_FIELDS)}"
        )


@dataclass
class Stage:
    """One link in a prompt chain.

    ``status`` and ``output`` are written only by the chain executor through
    ``begin``, ``append_output`` and ``finish``.
    """
    name: str
    prompt: PromptSpec = field(default_factory=PromptSpec)
    id: str = field(default_factory=new_id)
    output: str = ""
    status: StageStatus = StageStatus.IDLE
    error: Optional[str] = None

    def begin(self) -> None:
        """Start this stage's turn."""
        if self.status == StageStatus.RUNNING:
            raise StageStateError(f"Stage {self.id} is already running")
        self.status = StageStatus.RUNNING
        self.output = ""
        self.error = None

    def append_output(self, chunk: str) -> None:
        if self.status != StageStatus.RUNNING:
            raise StageStateError(
                f"Cannot append output to stage {self.id} in status '{self.status.value}'"
            )
        if chunk:
            self.output += chunk

    def finish(self, success: bool, error: Optional[str] = None) -> None:
        if self.status != StageStatus.RUNNING:
            raise StageStateError(
                f"Cannot finish stage {self.id} in status '{self.status.value}'"
            )
        if success:
            self.status = StageStatus.COMPLETED
        else:
            self.status = StageStatus.ERROR
            self.error = error

    def reset(self) -> None:
        """Return the stage to idle with an empty output."""
        self.status = StageStatus.IDLE
        self.output = ""
        self.error = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (StageStatus.COMPLETED, StageStatus.ERROR)


@dataclass
class StageResult:
    """Final state of one stage after a run."""
    id: str
    name: str
    status: StageStatus
    output: str
    prompt_text: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "output": self.output,
            "prompt_text": self.prompt_text,
            "error": self.error,
        }


@dataclass
class RunResult:
    """Outcome of one chain run."""
    stages: List[StageResult]
    failed_stage_id: Optional[str] = None
    error: Optional[BaseException] = None
    cancelled: bool = False
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        """True iff every stage reached ``completed``."""
        return bool(self.stages) and all(
            s.status == StageStatus.COMPLETED for s in self.stages
        )

    @property
    def final_output(self) -> str:
        """Output of the last completed stage."""
        for stage in reversed(self.stages):
            if stage.status == StageStatus.COMPLETED:
                return stage.output
        return ""

    def get_stage(self, stage_id: str) -> StageResult:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        raise KeyError(stage_id)

    def raise_for_status(self) -> None:
        """Raise ChainExecutionError unless every stage completed."""
        if self.success:
            return
        if self.cancelled:
            raise ChainExecutionError("Chain run was cancelled")
        if self.failed_stage_id is not None:
            failed = self.get_stage(self.failed_stage_id)
            raise ChainExecutionError(
                f"Stage '{failed.name}' failed: {failed.error}",
                failed_stage_id=self.failed_stage_id,
                cause=self.error,
            )
        raise ChainExecutionError("Chain run did not complete")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "cancelled": self.cancelled,
            "failed_stage_id": self.failed_stage_id,
            "duration_ms": round(self.duration_ms, 1),
            "stages": [s.to_dict() for s in self.stages],
        }


class EvaluationResult(BaseModel):
    """Grade of a model output against the prompt's evaluation criteria."""
    score: float = Field(ge=0, le=100)
    critique: str
    suggestions: List[str] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    """Critique of a RICCE prompt with suggested field rewrites."""
    feedback: str
    improvements: Dict[str, str] = Field(default_factory=dict)

    @field_validator("improvements")
    @classmethod
    def _known_fields_only(cls, value: Dict[str, str]) -> Dict[str, str]:
        return {k: v for k, v in value.items() if k in PROMPT_FIELDS and v}

    def apply_to(self, prompt: PromptSpec) -> PromptSpec:
        """Merge the suggested improvements into a copy of ``prompt``."""
        data = prompt.to_dict()
        data.update(self.improvements)
        return PromptSpec.from_dict(data)


class SavedPrompt(BaseModel):
    """A named prompt template in the local library."""
    id: str = Field(default_factory=new_id)
    name: str
    data: Dict[str, str]
    timestamp: float = Field(default_factory=time.time)

    @property
    def prompt(self) -> PromptSpec:
        return PromptSpec.from_dict(self.data)


class VariableScenario(BaseModel):
    """A named set of variable values."""
    id: str = Field(default_factory=new_id)
    name: str
    values: Dict[str, str] = Field(default_factory=dict)


class PromptHistoryItem(BaseModel):
    """One recorded test or comparison run."""
    id: str = Field(default_factory=new_id)
    timestamp: float = Field(default_factory=time.time)
    prompt_data: Dict[str, str]
    variables: Dict[str, str] = Field(default_factory=dict)
    output_a: str
    output_b: Optional[str] = None
    model_a: Optional[str] = None
    model_b: Optional[str] = None
    is_comparison: bool = False
    score_a: Optional[float] = None
    score_b: Optional[float] = None
