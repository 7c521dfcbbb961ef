"""
Template variable detection and substitution.

Placeholders use the literal ``{{name}}`` delimiters. The name is any run of
characters containing no ``{`` or ``}``. Substitution is a single pass: values
inserted for a placeholder are never scanned again, so a value that itself
contains ``{{...}}`` is emitted verbatim.
"""

import re
from typing import Iterable, List, Mapping, Optional, Set, Union

from .models import PROMPT_FIELDS, PromptSpec

PLACEHOLDER_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")

OUTPUT_VARIABLE_PREFIX = "output_"


def output_variable_name(index: int) -> str:
    """Reserved variable name for the output of the 1-based stage ``index``."""
    return f"{OUTPUT_VARIABLE_PREFIX}{index}"


def resolve(text: Optional[str], scope: Mapping[str, str]) -> str:
    """
    Replace every ``{{name}}`` whose name is in ``scope``.

    Placeholders for names missing from ``scope`` are left untouched.

    Examples:
        >>> resolve("Hello {{who}}", {"who": "bees"})
        'Hello bees'
        >>> resolve("Hello {{missing}}", {})
        'Hello {{missing}}'
    """
    if not text:
        return ""

    def _substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name in scope:
            return str(scope[name])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_substitute, text)


def find_variables(text: Optional[str]) -> List[str]:
    """Placeholder names in ``text`` in order of first appearance."""
    if not text:
        return []
    seen: List[str] = []
    for name in PLACEHOLDER_PATTERN.findall(text):
        if name not in seen:
            seen.append(name)
    return seen


def detect_variables(prompt: Union[PromptSpec, Iterable[str]]) -> Set[str]:
    """Distinct placeholder names across all five prompt fields."""
    if isinstance(prompt, PromptSpec):
        texts = [getattr(prompt, name) for name in PROMPT_FIELDS]
    else:
        texts = list(prompt)

    names: Set[str] = set()
    for text in texts:
        names.update(PLACEHOLDER_PATTERN.findall(text or ""))
    return names


def find_unresolved(text: Optional[str], scope: Mapping[str, str]) -> List[str]:
    """Placeholder names in ``text`` that ``scope`` cannot resolve."""
    return [name for name in find_variables(text) if name not in scope]


def build_scope(
    global_scope: Optional[Mapping[str, str]],
    stage_outputs: Optional[Mapping[str, str]] = None,
) -> dict:
    """
    Merge global variables with prior-stage outputs.

    Stage outputs take precedence over a global variable with the same name.
    """
    scope = dict(global_scope or {})
    scope.update(stage_outputs or {})
    return scope
