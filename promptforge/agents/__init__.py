"""Model-backed agents for refining, critiquing and evaluating prompts."""

from .prompt_refiner import PromptRefiner

__all__ = ["PromptRefiner"]
