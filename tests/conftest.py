"""
Pytest configuration and fixtures for PromptForge tests.

This module provides reusable fixtures for mocking the generation client and
local storage, enabling tests to run without API calls or environment variables.
"""

import logging
import os
from contextlib import ExitStack
from unittest.mock import patch

import pytest
import structlog

from promptforge.core.chain import PromptChain
from promptforge.core.models import PromptSpec, Stage
from promptforge.integrations.local_store import LocalPromptStore
from promptforge.utils.config import config
from tests.mocks.llm_mock import MockGenerationClient


@pytest.fixture
def mock_generation_client():
    """
    Fixture providing a MockGenerationClient with a fixed response.

    Usage:
        async def test_something(mock_generation_client):
            await mock_generation_client.stream("prompt", chunks.append)
    """
    return MockGenerationClient(fixed_response="Mock output")


@pytest.fixture
def local_store(tmp_path):
    """LocalPromptStore rooted in a temporary directory."""
    return LocalPromptStore(tmp_path / "store", history_limit=5)


@pytest.fixture
def bees_chain():
    """Two-stage chain from the getting-started walkthrough."""
    return create_two_stage_chain()


def create_two_stage_chain(topic: str = "bees") -> PromptChain:
    """
    Helper function to create a research -> campaign chain.

    Args:
        topic: Value bound to the ``topic`` global variable

    Returns:
        PromptChain with two idle stages
    """
    return PromptChain(
        stages=[
            Stage(
                name="Research",
                prompt=PromptSpec(
                    role="Researcher",
                    instruction="Summarize {{topic}}",
                    context="",
                    constraints="",
                    evaluation="",
                ),
            ),
            Stage(
                name="Campaign",
                prompt=PromptSpec(
                    role="Marketer",
                    instruction="Write a campaign from {{output_1}}",
                    context="Audience: {{audience}}",
                    constraints="",
                    evaluation="",
                ),
            ),
        ],
        variables={"topic": topic},
    )


# Environment variable management for tests
@pytest.fixture(autouse=True)
def preserve_env():
    """
    Automatically preserve and restore environment variables for each test.

    This ensures tests don't pollute each other's environment.
    """
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture(autouse=True)
def mock_llm_config(tmp_path):
    """
    Automatically provide an OpenAI API key and a scratch storage directory.

    Tests that exercise configuration errors override these values themselves.
    """
    overrides = {
        "openai_api_key": "test-key-for-ci",
        "llm_provider": "openai",
        "openai_model": "gpt-4o",
        "analysis_model": None,
        "storage_dir": str(tmp_path / "promptforge-home"),
        "history_limit": 50,
        "debug": False,
        "log_level": "WARNING",
    }
    with ExitStack() as stack:
        for name, value in overrides.items():
            stack.enter_context(patch.object(config, name, value))
        yield


@pytest.fixture(autouse=True)
def reset_logging():
    """
    Undo configure_logging() after each test.

    CLI tests bind log output to CliRunner's stderr, which is closed once the
    invocation returns.
    """
    yield
    structlog.reset_defaults()
    for handler in logging.root.handlers[:]:
        if type(handler) is logging.StreamHandler:
            logging.root.removeHandler(handler)


# Mark for live tests that require API keys
def pytest_configure(config):
    """Register custom markers for pytest."""
    config.addinivalue_line(
        "markers",
        "live: mark test as requiring live API access (skipped unless PROMPTFORGE_RUN_LIVE_TESTS is set)",
    )
