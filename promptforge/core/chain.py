"""
Multi-stage prompt chains.

A PromptChain is the ordered, user-editable list of stages owned by one
session. The ChainExecutor borrows a chain for the duration of a run, executes
its stages strictly in order, and is the only writer of stage status and
output while the run is in progress.
"""

import asyncio
import time
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Set

import structlog

from .errors import (
    ChainBusyError,
    ChainError,
    ChainNotIdleError,
    StageNotFoundError,
)
from .interfaces import GenerationClient
from .models import (
    PromptSpec,
    RunResult,
    RunState,
    Stage,
    StageResult,
    StageStatus,
    check_field_name,
)
from .prompt_assembly import assemble_stage_prompt
from .variables import (
    OUTPUT_VARIABLE_PREFIX,
    build_scope,
    detect_variables,
    output_variable_name,
)

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[str, Dict[str, Any]], None]


def foundation_prompt() -> PromptSpec:
    """Starter prompt for the first stage of a new chain."""
    return PromptSpec(
        role="Expert Researcher",
        instruction="Synthesize the core themes of {{topic}}.",
        context="Preparing a high-level briefing.",
        constraints="Max 3 bullet points.",
        evaluation="Clear, concise synthesis.",
    )


def expansion_prompt(previous_index: int) -> PromptSpec:
    """Starter prompt for a stage that builds on stage ``previous_index``."""
    return PromptSpec(
        role="Creative Director",
        instruction=(
            f"Based on Stage {previous_index} output, expand on the third theme: "
            f"{{{{{output_variable_name(previous_index)}}}}}."
        ),
        context="Turning research into a creative campaign.",
        constraints="Narrative tone.",
        evaluation="Compelling storytelling.",
    )


def default_chain(variables: Optional[Mapping[str, str]] = None) -> "PromptChain":
    """A new chain holding the single foundation stage."""
    chain = PromptChain(variables=variables)
    chain.add_stage()
    return chain


class PromptChain:
    """An ordered sequence of stages plus the chain's global variables."""

    def __init__(
        self,
        stages: Optional[List[Stage]] = None,
        variables: Optional[Mapping[str, str]] = None,
    ):
        self._stages: List[Stage] = list(stages or [])
        self._variables: Dict[str, str] = dict(variables or {})
        self._running = False

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[Stage]:
        return iter(tuple(self._stages))

    @property
    def stages(self) -> List[Stage]:
        """Stages in execution order (a copy of the list, not of the stages)."""
        return list(self._stages)

    @property
    def variables(self) -> Dict[str, str]:
        return dict(self._variables)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_idle(self) -> bool:
        """True when every stage is idle, i.e. the chain can be run."""
        return all(stage.status == StageStatus.IDLE for stage in self._stages)

    # Editing

    def add_stage(self, name: Optional[str] = None, prompt: Optional[PromptSpec] = None) -> Stage:
        """
        Append a stage.

        Without an explicit prompt the new stage gets a starter template: the
        foundation template for an empty chain, otherwise one that expands on
        the previous stage's output.
        """
        self._ensure_editable()
        count = len(self._stages)
        if prompt is None:
            prompt = foundation_prompt() if count == 0 else expansion_prompt(count)
        if name is None:
            label = "Foundation" if count == 0 else "Expansion"
            name = f"Stage {count + 1}: {label}"

        stage = Stage(name=name, prompt=prompt)
        self._stages.append(stage)
        logger.debug("Stage added", stage_id=stage.id, index=count + 1)
        return stage

    def remove_stage(self, stage_id: str) -> Stage:
        """Remove a stage. A chain always keeps at least one stage."""
        self._ensure_editable()
        index = self.index_of(stage_id)
        if len(self._stages) == 1:
            raise ChainError("Cannot remove the only stage of a chain")
        stage = self._stages.pop(index)
        logger.debug("Stage removed", stage_id=stage_id, index=index + 1)
        return stage

    def update_stage_field(self, stage_id: str, field: str, value: str) -> Stage:
        """Replace one RICCE field of a stage's prompt."""
        self._ensure_editable()
        check_field_name(field)
        stage = self.get_stage(stage_id)
        stage.prompt = stage.prompt.with_field(field, value)
        return stage

    def update_stage_name(self, stage_id: str, name: str) -> Stage:
        self._ensure_editable()
        stage = self.get_stage(stage_id)
        stage.name = name
        return stage

    def set_variable(self, name: str, value: str) -> None:
        self._ensure_editable()
        self._variables[name] = value

    def remove_variable(self, name: str) -> None:
        self._ensure_editable()
        self._variables.pop(name, None)

    def reset(self) -> None:
        """Return every stage to idle with empty output."""
        self._ensure_editable()
        for stage in self._stages:
            stage.reset()

    # Lookup

    def get_stage(self, stage_id: str) -> Stage:
        return self._stages[self.index_of(stage_id)]

    def index_of(self, stage_id: str) -> int:
        """Zero-based position of a stage."""
        for index, stage in enumerate(self._stages):
            if stage.id == stage_id:
                return index
        raise StageNotFoundError(stage_id)

    def detect_variables(self) -> Set[str]:
        """
        Global variables the chain needs.

        Reserved ``output_k`` names that refer to an earlier stage are
        excluded since the executor supplies them.
        """
        names: Set[str] = set()
        for index, stage in enumerate(self._stages, start=1):
            for name in detect_variables(stage.prompt):
                if _is_prior_output(name, index):
                    continue
                names.add(name)
        return names

    def _ensure_editable(self) -> None:
        if self._running:
            raise ChainBusyError("Chain cannot be modified while a run is in progress")

    def _acquire(self) -> None:
        if self._running:
            raise ChainBusyError("Chain is already running")
        self._running = True

    def _release(self) -> None:
        self._running = False


def _is_prior_output(name: str, stage_index: int) -> bool:
    if not name.startswith(OUTPUT_VARIABLE_PREFIX):
        return False
    suffix = name[len(OUTPUT_VARIABLE_PREFIX):]
    return suffix.isdigit() and 1 <= int(suffix) < stage_index


class ChainExecutor:
    """Runs the stages of a PromptChain sequentially against a GenerationClient."""

    def __init__(
        self,
        client: GenerationClient,
        model: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.client = client
        self.model = model
        self._progress_callback = progress_callback
        self._state = RunState.IDLE
        self._cancel_requested = False

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == RunState.RUNNING

    def cancel(self) -> None:
        """Stop the current run before its next stage starts.

        The stage in flight runs to completion; remaining stages stay idle.
        """
        if self.is_running:
            self._cancel_requested = True

    async def rerun(
        self, chain: PromptChain, global_scope: Optional[Mapping[str, str]] = None
    ) -> RunResult:
        """Reset every stage and run the chain from stage 1."""
        if self.is_running:
            raise ChainBusyError("Executor is already running a chain")
        chain.reset()
        return await self.run(chain, global_scope)

    async def run(
        self, chain: PromptChain, global_scope: Optional[Mapping[str, str]] = None
    ) -> RunResult:
        """
        Execute every stage of ``chain`` in order.

        ``global_scope`` defaults to the chain's own variables. It is copied
        once at the start of the run, so later edits do not affect stages
        already in flight. The first failing stage is marked ``error`` and
        halts the run; later stages are left ``idle``. Failures are reported
        in the returned RunResult; use ``RunResult.raise_for_status()`` to turn
        them into an exception.
        """
        if self.is_running or chain.is_running:
            raise ChainBusyError("A chain run is already in progress")
        if len(chain) == 0:
            raise ChainError("Chain has no stages")
        if not chain.is_idle:
            raise ChainNotIdleError(
                "All stages must be idle before a run; call reset() first"
            )

        chain._acquire()
        self._state = RunState.RUNNING
        self._cancel_requested = False

        if global_scope is None:
            global_scope = chain.variables
        snapshot = MappingProxyType(dict(global_scope))
        stages = chain.stages
        prompt_texts: Dict[str, str] = {}
        failed_stage_id: Optional[str] = None
        failure: Optional[BaseException] = None
        cancelled = False
        start = time.monotonic()

        logger.info("Starting chain run", stages=len(stages), variables=sorted(snapshot))
        self._emit("chain_started", {"stages": len(stages)})

        try:
            for index, stage in enumerate(stages, start=1):
                if self._cancel_requested:
                    cancelled = True
                    logger.info("Chain run cancelled", next_stage=index)
                    break

                stage.begin()
                scope = build_scope(snapshot, self._prior_outputs(stages, index))
                prompt_text = assemble_stage_prompt(stage.prompt, scope)
                prompt_texts[stage.id] = prompt_text

                logger.info("Stage started", stage_id=stage.id, index=index, name=stage.name)
                self._emit("stage_started", {"stage_id": stage.id, "index": index})

                try:
                    await self.client.stream(
                        prompt_text, self._chunk_sink(stage, index), model=self.model
                    )
                except asyncio.CancelledError:
                    stage.finish(False, error="Run was cancelled")
                    raise
                except Exception as e:
                    stage.finish(False, error=str(e))
                    failed_stage_id = stage.id
                    failure = e
                    logger.error(
                        "Stage failed", stage_id=stage.id, index=index, error=str(e)
                    )
                    self._emit(
                        "stage_failed",
                        {"stage_id": stage.id, "index": index, "error": str(e)},
                    )
                    break

                stage.finish(True)
                logger.info(
                    "Stage completed", stage_id=stage.id, index=index, chars=len(stage.output)
                )
                self._emit(
                    "stage_completed",
                    {"stage_id": stage.id, "index": index, "chars": len(stage.output)},
                )
        finally:
            self._state = RunState.IDLE
            self._cancel_requested = False
            chain._release()

        result = RunResult(
            stages=[
                StageResult(
                    id=stage.id,
                    name=stage.name,
                    status=stage.status,
                    output=stage.output,
                    prompt_text=prompt_texts.get(stage.id),
                    error=stage.error,
                )
                for stage in stages
            ],
            failed_stage_id=failed_stage_id,
            error=failure,
            cancelled=cancelled,
            duration_ms=(time.monotonic() - start) * 1000,
        )
        logger.info(
            "Chain run finished",
            success=result.success,
            cancelled=cancelled,
            duration_ms=round(result.duration_ms, 1),
        )
        self._emit("chain_finished", {"success": result.success, "cancelled": cancelled})
        return result

    @staticmethod
    def _prior_outputs(stages: List[Stage], index: int) -> Dict[str, str]:
        """``output_k`` bindings for completed stages before 1-based ``index``."""
        return {
            output_variable_name(k): stage.output
            for k, stage in enumerate(stages[: index - 1], start=1)
            if stage.status == StageStatus.COMPLETED
        }

    def _chunk_sink(self, stage: Stage, index: int) -> Callable[[str], None]:
        def on_chunk(chunk: str) -> None:
            stage.append_output(chunk)
            if self._progress_callback:
                self._emit(
                    "stage_chunk", {"stage_id": stage.id, "index": index, "chunk": chunk}
                )

        return on_chunk

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        """Report progress; a failing callback never changes stage status."""
        if not self._progress_callback:
            return
        try:
            self._progress_callback(event_type, payload)
        except Exception as e:
            logger.warning("Progress callback failed", event_type=event_type, error=str(e))
