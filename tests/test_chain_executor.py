"""
Tests for ChainExecutor.

Covers sequential execution, output_k substitution, failure halting,
variable precedence, run-state misuse and cancellation.
"""

import asyncio

import pytest

from promptforge.core.chain import ChainExecutor, PromptChain
from promptforge.core.errors import (
    ChainBusyError,
    ChainError,
    ChainExecutionError,
    ChainNotIdleError,
    GenerationError,
)
from promptforge.core.models import PromptSpec, RunState, Stage, StageStatus
from tests.mocks.llm_mock import MockGenerationClient


def _stage(name, instruction, **fields):
    return Stage(name=name, prompt=PromptSpec(instruction=instruction, **fields))


@pytest.mark.asyncio
async def test_two_stage_chain_substitutes_previous_output(bees_chain):
    client = MockGenerationClient(responses=[["Bees ", "pollinate ", "flowers."], "Campaign copy"])
    executor = ChainExecutor(client)

    result = await executor.run(bees_chain)

    assert result.success
    stage_1, stage_2 = bees_chain.stages
    assert stage_1.status == StageStatus.COMPLETED
    assert stage_1.output == "Bees pollinate flowers."
    assert stage_2.output == "Campaign copy"

    assert client.prompts[0] == (
        "Role: Researcher\nInstruction: Summarize bees\nContext: \nConstraints: \nEvaluation: "
    )
    assert "Instruction: Write a campaign from Bees pollinate flowers." in client.prompts[1]
    # No value for audience: the placeholder is sent verbatim
    assert "Context: Audience: {{audience}}" in client.prompts[1]
    assert result.get_stage(stage_2.id).prompt_text == client.prompts[1]
    assert result.final_output == "Campaign copy"


@pytest.mark.asyncio
async def test_failure_halts_remaining_stages():
    chain = PromptChain(
        stages=[_stage("a", "one"), _stage("b", "two"), _stage("c", "three")]
    )
    client = MockGenerationClient(responses=["first", GenerationError("rate limited")])

    result = await ChainExecutor(client).run(chain)

    assert not result.success
    assert [s.status for s in chain] == [
        StageStatus.COMPLETED,
        StageStatus.ERROR,
        StageStatus.IDLE,
    ]
    assert client.call_count == 2
    assert result.failed_stage_id == chain.stages[1].id
    assert chain.stages[1].error == "rate limited"
    assert isinstance(result.error, GenerationError)
    assert chain.stages[2].output == ""

    with pytest.raises(ChainExecutionError):
        result.raise_for_status()


@pytest.mark.asyncio
async def test_failed_stage_keeps_partial_output():
    chain = PromptChain(stages=[_stage("a", "one")])
    client = MockGenerationClient(responses=[["partial ", "text", GenerationError("dropped")]])

    await ChainExecutor(client).run(chain)

    stage = chain.stages[0]
    assert stage.status == StageStatus.ERROR
    assert stage.output == "partial text"


@pytest.mark.asyncio
async def test_stage_output_overrides_global_variable():
    chain = PromptChain(
        stages=[_stage("a", "first sees {{output_1}}"), _stage("b", "second sees {{output_1}}")],
        variables={"output_1": "GLOBAL"},
    )
    client = MockGenerationClient(responses=["STAGE ONE", "done"])

    await ChainExecutor(client).run(chain)

    # Stage 1 has no prior output, so the global binding applies
    assert "first sees GLOBAL" in client.prompts[0]
    assert "second sees STAGE ONE" in client.prompts[1]


@pytest.mark.asyncio
async def test_later_stage_outputs_are_not_visible():
    chain = PromptChain(stages=[_stage("a", "peek {{output_2}}"), _stage("b", "two")])
    client = MockGenerationClient(responses=["one", "two"])

    await ChainExecutor(client).run(chain)

    assert "peek {{output_2}}" in client.prompts[0]


@pytest.mark.asyncio
async def test_substituted_output_is_not_expanded_again():
    chain = PromptChain(
        stages=[_stage("a", "x"), _stage("b", "got {{output_1}}")],
        variables={"topic": "bees"},
    )
    client = MockGenerationClient(responses=["literally {{topic}}", "ok"])

    await ChainExecutor(client).run(chain)

    assert "got literally {{topic}}" in client.prompts[1]


@pytest.mark.asyncio
async def test_explicit_global_scope_is_snapshotted():
    chain = PromptChain(stages=[_stage("a", "{{topic}}"), _stage("b", "{{topic}}")])
    scope = {"topic": "bees"}

    def mutate_scope(prompt_text, model):
        scope["topic"] = "wasps"

    client = MockGenerationClient(responses=["1", "2"], before_stream=mutate_scope)
    await ChainExecutor(client).run(chain, scope)

    assert "Instruction: bees" in client.prompts[0]
    assert "Instruction: bees" in client.prompts[1]


@pytest.mark.asyncio
async def test_chain_is_locked_during_run(bees_chain):
    errors = []

    def try_edit(prompt_text, model):
        try:
            bees_chain.set_variable("topic", "wasps")
        except ChainBusyError as e:
            errors.append(e)

    client = MockGenerationClient(responses=["1", "2"], before_stream=try_edit)
    executor = ChainExecutor(client)
    await executor.run(bees_chain)

    assert len(errors) == 2
    assert bees_chain.variables["topic"] == "bees"
    assert not bees_chain.is_running
    assert executor.state == RunState.IDLE


@pytest.mark.asyncio
async def test_concurrent_run_is_rejected(bees_chain):
    client = MockGenerationClient(responses=[["a", "b", "c"], ["d", "e"]])
    executor = ChainExecutor(client)

    task = asyncio.create_task(executor.run(bees_chain))
    await asyncio.sleep(0)
    assert executor.is_running

    with pytest.raises(ChainBusyError):
        await executor.run(bees_chain)
    with pytest.raises(ChainBusyError):
        await ChainExecutor(client).run(bees_chain)

    result = await task
    assert result.success
    assert executor.state == RunState.IDLE


@pytest.mark.asyncio
async def test_run_requires_idle_chain(bees_chain):
    executor = ChainExecutor(MockGenerationClient())
    await executor.run(bees_chain)

    with pytest.raises(ChainNotIdleError):
        await executor.run(bees_chain)


@pytest.mark.asyncio
async def test_rerun_resets_and_runs_again(bees_chain):
    client = MockGenerationClient(responses=["first", GenerationError("boom"), "again 1", "again 2"])
    executor = ChainExecutor(client)

    failed = await executor.run(bees_chain)
    assert not failed.success

    result = await executor.rerun(bees_chain)

    assert result.success
    assert [s.output for s in bees_chain] == ["again 1", "again 2"]
    assert client.call_count == 4


@pytest.mark.asyncio
async def test_empty_chain_is_rejected():
    with pytest.raises(ChainError, match="no stages"):
        await ChainExecutor(MockGenerationClient()).run(PromptChain())


@pytest.mark.asyncio
async def test_cancel_stops_before_next_stage():
    chain = PromptChain(stages=[_stage("a", "1"), _stage("b", "2"), _stage("c", "3")])

    def cancel_after_first(prompt_text, model):
        executor.cancel()

    client = MockGenerationClient(responses=["one", "two", "three"], before_stream=cancel_after_first)
    executor = ChainExecutor(client)

    result = await executor.run(chain)

    assert result.cancelled
    assert not result.success
    assert client.call_count == 1
    assert [s.status for s in chain] == [
        StageStatus.COMPLETED,
        StageStatus.IDLE,
        StageStatus.IDLE,
    ]
    with pytest.raises(ChainExecutionError, match="cancelled"):
        result.raise_for_status()


@pytest.mark.asyncio
async def test_cancel_when_idle_is_noop(bees_chain, mock_generation_client):
    executor = ChainExecutor(mock_generation_client)
    executor.cancel()

    result = await executor.run(bees_chain)

    assert result.success
    assert not result.cancelled


@pytest.mark.asyncio
async def test_task_cancellation_marks_stage_and_releases_chain(bees_chain):
    client = MockGenerationClient(responses=[["a", "b", "c", "d"]])
    executor = ChainExecutor(client)

    task = asyncio.create_task(executor.run(bees_chain))
    await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    stage_1, stage_2 = bees_chain.stages
    assert stage_1.status == StageStatus.ERROR
    assert stage_1.error == "Run was cancelled"
    assert stage_2.status == StageStatus.IDLE
    assert not bees_chain.is_running
    assert executor.state == RunState.IDLE


@pytest.mark.asyncio
async def test_progress_events(bees_chain):
    events = []
    client = MockGenerationClient(responses=[["a", "b"], "c"])
    executor = ChainExecutor(client, progress_callback=lambda t, p: events.append((t, p)))

    await executor.run(bees_chain)

    assert [t for t, _ in events] == [
        "chain_started",
        "stage_started",
        "stage_chunk",
        "stage_chunk",
        "stage_completed",
        "stage_started",
        "stage_chunk",
        "stage_completed",
        "chain_finished",
    ]
    assert events[2][1]["chunk"] == "a"
    assert events[-1][1] == {"success": True, "cancelled": False}


@pytest.mark.asyncio
async def test_model_is_passed_to_every_stage(bees_chain, mock_generation_client):
    await ChainExecutor(mock_generation_client, model="gpt-4o-mini").run(bees_chain)
    assert mock_generation_client.models == ["gpt-4o-mini", "gpt-4o-mini"]


@pytest.mark.asyncio
async def test_empty_stream_completes_with_empty_output():
    chain = PromptChain(stages=[_stage("a", "x"), _stage("b", "[{{output_1}}]")])
    client = MockGenerationClient(responses=[[], "ok"])

    result = await ChainExecutor(client).run(chain)

    assert result.success
    assert chain.stages[0].output == ""
    assert "Instruction: []" in client.prompts[1]


@pytest.mark.asyncio
async def test_single_stage_streams_into_output():
    chain = PromptChain(stages=[_stage("Summary", "Summarize {{topic}}")], variables={"topic": "bees"})
    client = MockGenerationClient(responses=[["Bees ", "are ", "great."]])

    result = await ChainExecutor(client).run(chain)

    assert result.success
    stage = chain.stages[0]
    assert stage.status == StageStatus.COMPLETED
    assert stage.output == "Bees are great."
    assert "Instruction: Summarize bees" in client.prompts[0]


@pytest.mark.asyncio
@pytest.mark.parametrize("failing_event", ["chain_started", "stage_started", "stage_chunk", "stage_completed"])
async def test_failing_progress_callback_does_not_break_run(bees_chain, failing_event):
    def progress_callback(event_type, payload):
        if event_type == failing_event:
            raise RuntimeError("display went away")

    client = MockGenerationClient(responses=[["a", "b"], "c"])
    executor = ChainExecutor(client, progress_callback=progress_callback)

    result = await executor.run(bees_chain)

    assert result.success
    assert [s.status for s in bees_chain] == [StageStatus.COMPLETED, StageStatus.COMPLETED]
    assert bees_chain.stages[0].output == "ab"
    assert not bees_chain.is_running
    assert executor.state == RunState.IDLE
