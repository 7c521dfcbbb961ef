"""Tests for PromptRefiner refine / analyze / evaluate operations."""

import pytest

from promptforge.agents.prompt_refiner import PromptRefiner
from promptforge.agents.schemas import (
    OUTPUT_EVALUATION_SCHEMA,
    PROMPT_ANALYSIS_SCHEMA,
    RICCE_PROMPT_SCHEMA,
)
from promptforge.core.errors import GenerationError
from promptforge.core.models import PromptSpec
from promptforge.prompts.system_prompts import REFINE_SYSTEM_PROMPT
from tests.mocks.llm_mock import MockGenerationClient, create_mock_refined_prompt


@pytest.mark.asyncio
async def test_refine_prompt_returns_ricce_prompt():
    client = MockGenerationClient(structured_responses=[create_mock_refined_prompt()])
    refiner = PromptRefiner(client, model="gpt-4o")

    prompt = await refiner.refine_prompt("  write an email about our product  ")

    assert prompt.role == "Senior copywriter"
    assert prompt.instruction == "Write a launch email for {{product}}."

    call = client.structured_calls[0]
    assert call["schema"] is RICCE_PROMPT_SCHEMA
    assert call["system_prompt"] == REFINE_SYSTEM_PROMPT
    assert call["model"] == "gpt-4o"
    assert call["prompt_text"].endswith('"write an email about our product"')


@pytest.mark.asyncio
async def test_refine_prompt_request_keeps_braces_literal():
    client = MockGenerationClient(structured_responses=[create_mock_refined_prompt()])

    await PromptRefiner(client).refine_prompt("email about {{product}}")

    assert '"email about {{product}}"' in client.structured_calls[0]["prompt_text"]


@pytest.mark.asyncio
async def test_refine_prompt_rejects_empty_input():
    client = MockGenerationClient()
    with pytest.raises(ValueError, match="required"):
        await PromptRefiner(client).refine_prompt("   ")
    assert client.structured_calls == []


@pytest.mark.asyncio
async def test_refine_prompt_missing_fields():
    client = MockGenerationClient(structured_responses=[{"role": "R", "instruction": "I"}])

    with pytest.raises(GenerationError, match="missing fields context, constraints, evaluation"):
        await PromptRefiner(client).refine_prompt("anything")


@pytest.mark.asyncio
async def test_refine_prompt_propagates_generation_error():
    client = MockGenerationClient(structured_responses=[GenerationError("Invalid AI response format")])

    with pytest.raises(GenerationError):
        await PromptRefiner(client).refine_prompt("anything")


@pytest.mark.asyncio
async def test_analyze_prompt():
    client = MockGenerationClient(
        structured_responses=[
            {
                "feedback": "Context is missing the audience.",
                "improvements": {"context": "Audience: first-time buyers", "mood": "ignored"},
            }
        ]
    )
    prompt = PromptSpec(role="Writer", instruction="Describe {{product}}")

    analysis = await PromptRefiner(client).analyze_prompt(prompt)

    assert analysis.feedback == "Context is missing the audience."
    assert analysis.improvements == {"context": "Audience: first-time buyers"}
    call = client.structured_calls[0]
    assert call["schema"] is PROMPT_ANALYSIS_SCHEMA
    assert '"instruction": "Describe {{product}}"' in call["prompt_text"]


@pytest.mark.asyncio
async def test_analyze_prompt_invalid_response():
    client = MockGenerationClient(structured_responses=[{"improvements": {}}])

    with pytest.raises(GenerationError, match="Invalid AI response format for analyze"):
        await PromptRefiner(client).analyze_prompt(PromptSpec())


@pytest.mark.asyncio
async def test_evaluate_output():
    client = MockGenerationClient(
        structured_responses=[
            {"score": 82, "critique": "Solid", "suggestions": ["Shorter", "Add price", "Use bullets"]}
        ]
    )
    prompt = PromptSpec(evaluation="Mentions the price")

    result = await PromptRefiner(client).evaluate_output(prompt, "The kettle costs $30.")

    assert result.score == 82
    assert len(result.suggestions) == 3
    call = client.structured_calls[0]
    assert call["schema"] is OUTPUT_EVALUATION_SCHEMA
    assert "Prompt Evaluation Criteria: Mentions the price" in call["prompt_text"]
    assert call["prompt_text"].endswith("The kettle costs $30.")


@pytest.mark.asyncio
async def test_evaluate_output_score_out_of_range():
    client = MockGenerationClient(structured_responses=[{"score": 140, "critique": "?"}])

    with pytest.raises(GenerationError):
        await PromptRefiner(client).evaluate_output(PromptSpec(), "output")


@pytest.mark.asyncio
async def test_progress_callback_events():
    events = []
    client = MockGenerationClient(structured_responses=[create_mock_refined_prompt()])
    refiner = PromptRefiner(client, progress_callback=lambda t, p: events.append(t))

    await refiner.refine_prompt("anything")

    assert events == ["refine_started", "refine_complete"]
