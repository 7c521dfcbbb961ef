"""Assemble resolved RICCE fields into a single generation request."""

from typing import Mapping, Optional, Sequence, Tuple

from .models import PromptSpec
from .variables import resolve

STAGE_FIELD_LABELS = (
    ("role", "Role"),
    ("instruction", "Instruction"),
    ("context", "Context"),
    ("constraints", "Constraints"),
    ("evaluation", "Evaluation"),
)

SYSTEM_INSTRUCTION_SECTIONS = (
    ("role", "ROLE"),
    ("instruction", "PRIMARY TASK"),
    ("context", "CONTEXT"),
    ("constraints", "CONSTRAINTS & RULES"),
    ("evaluation", "SUCCESS CRITERIA"),
)

CHAT_ROLE_LABELS = {"user": "User", "assistant": "Assistant"}


def resolve_prompt(prompt: PromptSpec, scope: Optional[Mapping[str, str]]) -> PromptSpec:
    """Resolve placeholders in all five fields."""
    scope = scope or {}
    return PromptSpec.from_dict(
        {name: resolve(value, scope) for name, value in prompt.to_dict().items()}
    )


def assemble_stage_prompt(prompt: PromptSpec, scope: Optional[Mapping[str, str]] = None) -> str:
    """
    Build the request text for one chain stage.

    Fields always appear in role, instruction, context, constraints,
    evaluation order, one labelled line each, so the same prompt and scope
    always produce the same text.
    """
    resolved = resolve_prompt(prompt, scope)
    return "\n".join(
        f"{label}: {getattr(resolved, name)}" for name, label in STAGE_FIELD_LABELS
    )


def build_system_instruction(prompt: PromptSpec, scope: Optional[Mapping[str, str]] = None) -> str:
    """Build the markdown system instruction used for single tests and comparisons."""
    resolved = resolve_prompt(prompt, scope)
    sections = [
        f"## {heading}\n{getattr(resolved, name)}"
        for name, heading in SYSTEM_INSTRUCTION_SECTIONS
    ]
    return "# SYSTEM INSTRUCTION\n" + "\n\n".join(sections)


def assemble_chat_prompt(system_instruction: str, turns: Sequence[Tuple[str, str]]) -> str:
    """
    Build the request text for the next chat reply.

    ``turns`` are ``(role, content)`` pairs, oldest first, ending with the
    new user message. The text ends with an open ``Assistant:`` line.
    """
    lines = [f"# SYSTEM INSTRUCTION\n{system_instruction}", "# CONVERSATION"]
    for role, content in turns:
        lines.append(f"{CHAT_ROLE_LABELS[role]}: {content}")
    lines.append(f"{CHAT_ROLE_LABELS['assistant']}:")
    return "\n\n".join(lines)
