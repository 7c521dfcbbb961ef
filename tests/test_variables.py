"""Tests for {{placeholder}} detection and substitution."""

from promptforge.core.models import PromptSpec
from promptforge.core.variables import (
    build_scope,
    detect_variables,
    find_unresolved,
    find_variables,
    output_variable_name,
    resolve,
)


def test_resolve_substitutes_known_names():
    assert resolve("Summarize {{topic}} for {{audience}}", {"topic": "bees", "audience": "kids"}) == (
        "Summarize bees for kids"
    )


def test_resolve_leaves_unknown_placeholders_verbatim():
    assert resolve("Hi {{x}} and {{y}}", {"x": "1"}) == "Hi 1 and {{y}}"


def test_resolve_replaces_every_occurrence():
    assert resolve("{{a}}-{{a}}-{{a}}", {"a": "z"}) == "z-z-z"


def test_resolve_is_single_pass():
    """A substituted value containing a placeholder is not expanded again."""
    scope = {"a": "{{b}}", "b": "nested"}
    assert resolve("value: {{a}}", scope) == "value: {{b}}"


def test_resolve_twice_with_full_scope_is_stable():
    scope = {"topic": "bees", "audience": "kids", "tone": ""}
    template = "{{topic}} for {{audience}}{{tone}}, about {{topic}}"

    once = resolve(template, scope)

    assert once == "bees for kids, about bees"
    assert resolve(once, scope) == once


def test_resolve_empty_and_none_text():
    assert resolve("", {"a": "1"}) == ""
    assert resolve(None, {"a": "1"}) == ""


def test_resolve_with_empty_value():
    assert resolve("[{{a}}]", {"a": ""}) == "[]"


def test_resolve_ignores_single_braces_and_nested_delimiters():
    assert resolve("{a} {{{a}}}", {"a": "x"}) == "{a} {x}"


def test_names_may_contain_spaces_and_punctuation():
    assert find_variables("{{first name}} {{user.id}}") == ["first name", "user.id"]
    assert resolve("{{first name}}", {"first name": "Ada"}) == "Ada"


def test_find_variables_orders_by_first_appearance_without_duplicates():
    assert find_variables("{{b}} {{a}} {{b}} {{c}}") == ["b", "a", "c"]


def test_find_variables_requires_nonempty_name():
    assert find_variables("{{}} {{ }}") == [" "]


def test_detect_variables_across_all_fields():
    prompt = PromptSpec(
        role="{{persona}}",
        instruction="Explain {{topic}}",
        context="{{topic}} for {{audience}}",
        constraints="",
        evaluation="Mentions {{keyword}}",
    )
    assert detect_variables(prompt) == {"persona", "topic", "audience", "keyword"}


def test_detect_variables_shared_between_fields():
    prompt = PromptSpec(role="Hi {{x}}", instruction="{{x}} and {{y}}")
    assert detect_variables(prompt) == {"x", "y"}


def test_detect_variables_on_plain_texts():
    assert detect_variables(["{{a}}", None, "{{b}} {{a}}"]) == {"a", "b"}


def test_detect_variables_no_placeholders():
    assert detect_variables(PromptSpec()) == set()


def test_find_unresolved():
    assert find_unresolved("{{a}} {{b}} {{c}}", {"b": "x"}) == ["a", "c"]


def test_output_variable_name():
    assert output_variable_name(1) == "output_1"
    assert output_variable_name(12) == "output_12"


def test_build_scope_outputs_override_globals():
    scope = build_scope({"output_1": "global", "topic": "bees"}, {"output_1": "stage"})
    assert scope == {"output_1": "stage", "topic": "bees"}


def test_build_scope_does_not_mutate_inputs():
    globals_ = {"a": "1"}
    build_scope(globals_, {"b": "2"})
    assert globals_ == {"a": "1"}


def test_build_scope_accepts_none():
    assert build_scope(None, None) == {}
