"""Command-line interface for PromptForge."""

import asyncio
import json
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import __version__
from .core.errors import PromptForgeError
from .core.models import StageStatus
from .utils.config import config
from .utils.file_helpers import (
    dump_chain_file,
    dump_prompt_file,
    load_chain_file,
    load_prompt_file,
    parse_variable_options,
    prompt_field_lines,
)
from .utils.logging_config import configure_logging

console = Console()

STATUS_STYLES = {
    StageStatus.IDLE: "dim",
    StageStatus.RUNNING: "blue",
    StageStatus.COMPLETED: "green",
    StageStatus.ERROR: "red",
}


def print_version(ctx, param, value):
    if value:
        python_version = f"{sys.version_info.major}.{sys.version_info.minor}"
        console.print(f"PromptForge v{__version__} (Python {python_version})")
        ctx.exit()


def create_generation_client():
    from .integrations.llm_provider import create_generation_client as _create

    return _create(config)


def _get_client():
    try:
        return create_generation_client()
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(1)


def _get_store():
    from .integrations.local_store import LocalPromptStore

    return LocalPromptStore(config.storage_dir, history_limit=config.history_limit)


def _fail(e: Exception) -> None:
    console.print(f"[red]Error: {escape(str(e))}[/red]")
    if config.debug:
        import traceback

        console.print("[red]" + escape(traceback.format_exc()) + "[/red]")
    sys.exit(1)


def _variables_from(options, base=None):
    variables = dict(base or {})
    try:
        variables.update(parse_variable_options(options))
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--var")
    return variables


def _print_prompt(prompt, title="RICCE Prompt"):
    table = Table(title=title, show_header=False, box=None)
    table.add_column("field", style="cyan", no_wrap=True)
    table.add_column("value")
    for name, value in prompt_field_lines(prompt):
        table.add_row(name, escape(value) or "[dim](empty)[/dim]")
    console.print(table)


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug mode")
@click.option(
    "--version",
    is_flag=True,
    callback=print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit",
)
def main(debug: bool):
    """PromptForge - compose, refine and chain RICCE prompts."""
    if debug:
        config.debug = True
        config.log_level = "DEBUG"
    configure_logging(config.log_level)


@main.command()
@click.argument("chain_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--var", "var_options", multiple=True, help="Global variable as name=value (repeatable)")
@click.option("--model", help="Model for every stage (default: configured model)")
@click.option("--out", type=click.Path(), help="Write the run report as JSON")
@click.option("--stream", is_flag=True, help="Print each stage's output as it arrives")
def chain(chain_file: str, var_options, model: str, out: str, stream: bool):
    """Run a multi-stage prompt chain defined in a YAML/JSON file."""
    from .core.chain import ChainExecutor

    try:
        prompt_chain = load_chain_file(chain_file)
    except (OSError, ValueError) as e:
        _fail(e)

    for name, value in _variables_from(var_options).items():
        prompt_chain.set_variable(name, value)

    missing = sorted(prompt_chain.detect_variables() - set(prompt_chain.variables))
    if missing:
        console.print(
            f"[yellow]Warning: unresolved variables will be sent verbatim: {', '.join(missing)}[/yellow]"
        )

    def progress_callback(event_type: str, payload: dict):
        if event_type == "stage_started":
            stage = prompt_chain.stages[payload["index"] - 1]
            console.print(f"[cyan]Stage {payload['index']}/{len(prompt_chain)}: {escape(stage.name)}...[/cyan]")
        elif event_type == "stage_chunk" and stream:
            console.print(payload["chunk"], end="", markup=False, highlight=False)
        elif event_type == "stage_completed":
            if stream:
                console.print()
            console.print(f"  [green]✓ completed ({payload['chars']} chars)[/green]")
        elif event_type == "stage_failed":
            if stream:
                console.print()
            console.print(f"  [red]✗ failed: {escape(payload['error'])}[/red]")

    executor = ChainExecutor(_get_client(), model=model, progress_callback=progress_callback)

    try:
        result = asyncio.run(executor.run(prompt_chain))
    except PromptForgeError as e:
        _fail(e)

    for index, stage in enumerate(result.stages, start=1):
        style = STATUS_STYLES[stage.status]
        parts = []
        if stage.output:
            parts.append(escape(stage.output))
        if stage.error:
            parts.append(f"[red]{escape(stage.error)}[/red]")
        body = "\n\n".join(parts) or "[dim]not attempted[/dim]"
        console.print(
            Panel(
                body,
                title=f"{index}. {escape(stage.name)}",
                subtitle=f"[{style}]{stage.status.value}[/{style}]",
                border_style=style,
            )
        )

    if out:
        with open(out, "w", encoding="utf-8") as f:
            json.dump(result.to_dict(), f, indent=2, ensure_ascii=False)
        console.print(f"[green]✓ Run report written to {out}[/green]")

    if not result.success:
        console.print("[red]Chain run failed[/red]")
        sys.exit(1)
    console.print(f"[green bold]✓ Chain complete in {result.duration_ms / 1000:.1f}s[/green bold]")


@main.command(name="new-chain")
@click.argument("out", type=click.Path(dir_okay=False))
@click.option("--stages", "stage_count", default=2, show_default=True, type=click.IntRange(1), help="Number of starter stages")
@click.option("--var", "var_options", multiple=True, help="Global variable as name=value (repeatable)")
def new_chain(out: str, stage_count: int, var_options):
    """Write a starter chain file (foundation stage plus expansions)."""
    from .core.chain import default_chain

    prompt_chain = default_chain(_variables_from(var_options))
    for _ in range(stage_count - 1):
        prompt_chain.add_stage()

    dump_chain_file(out, prompt_chain)
    console.print(f"[green]✓ Wrote {stage_count}-stage chain to {out}[/green]")


@main.command()
@click.argument("prompt_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--var", "var_options", multiple=True, help="Variable as name=value (repeatable)")
@click.option("--scenario", help="Load variables from a saved scenario")
@click.option("--model", help="Model to test (default: configured model)")
@click.option("--compare", "compare_model", help="Second model to run side by side")
@click.option("--evaluate", is_flag=True, help="Grade the output(s) against the evaluation field")
@click.option("--history/--no-history", default=True, help="Record the run in local history")
def test(prompt_file, var_options, scenario, model, compare_model, evaluate, history):
    """Run a single RICCE prompt, optionally against two models."""
    from .agents.prompt_refiner import PromptRefiner
    from .core.comparison import PromptTester, history_item_for, word_diff
    from .core.variables import detect_variables

    try:
        prompt, file_variables = load_prompt_file(prompt_file)
        store = _get_store()
        if scenario:
            saved = store.get_scenario(scenario)
            if saved is None:
                raise ValueError(f"Scenario not found: {scenario}")
            file_variables.update(saved.values)
    except (OSError, ValueError, PromptForgeError) as e:
        _fail(e)

    variables = _variables_from(var_options, file_variables)
    missing = sorted(detect_variables(prompt) - set(variables))
    if missing:
        console.print(f"[yellow]Warning: no value for {', '.join(missing)}[/yellow]")

    client = _get_client()
    tester = PromptTester(client)
    model = model or config.default_model

    async def run_test():
        if compare_model:
            comparison = await tester.compare(prompt, variables, model, compare_model)
            outputs = [comparison.a, comparison.b]
        else:
            outputs = [await tester.run_test(prompt, variables, model=model)]

        scores = []
        if evaluate:
            refiner = PromptRefiner(client, model=config.effective_analysis_model)
            for output in outputs:
                scores.append(await refiner.evaluate_output(prompt, output.output))
        return outputs, scores

    try:
        with console.status("[bold blue]Generating...[/bold blue]", spinner="dots"):
            outputs, scores = asyncio.run(run_test())
    except PromptForgeError as e:
        _fail(e)

    for position, output in enumerate(outputs):
        body = escape(output.output)
        if position == 1:
            body = Text()
            for token, is_new in word_diff(outputs[0].output, output.output):
                body.append(token, style="bold yellow" if is_new else None)
        console.print(Panel(body, title=output.model or "default model", subtitle=f"{output.duration_ms / 1000:.1f}s"))
        if scores:
            score = scores[position]
            console.print(f"  [bold]Score: {score.score:g}/100[/bold] {escape(score.critique)}")
            for suggestion in score.suggestions:
                console.print(f"  [dim]- {escape(suggestion)}[/dim]")

    if history:
        item = history_item_for(prompt, variables, outputs[0], outputs[1] if len(outputs) > 1 else None)
        if scores:
            item.score_a = scores[0].score
            item.score_b = scores[1].score if len(scores) > 1 else None
        try:
            store.add_history(item)
        except PromptForgeError as e:
            console.print(f"[yellow]Warning: could not record history: {e}[/yellow]")


@main.command()
@click.argument("request")
@click.option("--out", type=click.Path(), help="Write the refined prompt (YAML/JSON)")
def refine(request: str, out: str):
    """Turn a vague request into a structured RICCE prompt."""
    from .agents.prompt_refiner import PromptRefiner

    refiner = PromptRefiner(_get_client(), model=config.effective_analysis_model)
    try:
        with console.status("[bold blue]Refining...[/bold blue]", spinner="dots"):
            prompt = asyncio.run(refiner.refine_prompt(request))
    except (PromptForgeError, ValueError) as e:
        _fail(e)

    _print_prompt(prompt, title="Refined prompt")
    if out:
        dump_prompt_file(out, prompt)
        console.print(f"[green]✓ Prompt written to {out}[/green]")


@main.command()
@click.argument("prompt_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--apply", "apply_changes", is_flag=True, help="Merge the suggested improvements")
@click.option("--out", type=click.Path(), help="Where to write the improved prompt (default: overwrite)")
def analyze(prompt_file: str, apply_changes: bool, out: str):
    """Critique a prompt and suggest field improvements."""
    from .agents.prompt_refiner import PromptRefiner

    try:
        prompt, variables = load_prompt_file(prompt_file)
    except (OSError, ValueError) as e:
        _fail(e)

    refiner = PromptRefiner(_get_client(), model=config.effective_analysis_model)
    try:
        with console.status("[bold blue]Analyzing...[/bold blue]", spinner="dots"):
            analysis = asyncio.run(refiner.analyze_prompt(prompt))
    except PromptForgeError as e:
        _fail(e)

    console.print(Panel(escape(analysis.feedback), title="Feedback"))
    if not analysis.improvements:
        console.print("[dim]No field improvements suggested[/dim]")
        return

    for name, value in analysis.improvements.items():
        console.print(f"[cyan]{name}[/cyan]: {escape(value)}")

    if apply_changes:
        target = out or prompt_file
        dump_prompt_file(target, analysis.apply_to(prompt), variables)
        console.print(f"[green]✓ Improvements applied to {target}[/green]")


@main.command(name="vars")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
def list_variables(file: str):
    """List the {{variables}} a prompt or chain file needs."""
    from .core.variables import detect_variables

    try:
        try:
            prompt_chain = load_chain_file(file)
            names, known = prompt_chain.detect_variables(), prompt_chain.variables
        except ValueError:
            prompt, known = load_prompt_file(file)
            names = detect_variables(prompt)
    except (OSError, ValueError) as e:
        _fail(e)

    if not names:
        console.print("[dim]No variables found[/dim]")
        return
    for name in sorted(names):
        value = known.get(name)
        suffix = f" = {escape(value)}" if value is not None else " [yellow](no value)[/yellow]"
        console.print(f"[cyan]{{{{{escape(name)}}}}}[/cyan]{suffix}")


@main.group()
def templates():
    """Manage the local prompt template library."""


@templates.command(name="list")
def templates_list():
    try:
        saved = _get_store().list_templates()
    except (PromptForgeError, OSError) as e:
        _fail(e)
    if not saved:
        console.print("[dim]No saved templates[/dim]")
        return
    table = Table("name", "id", "instruction")
    for template in saved:
        table.add_row(escape(template.name), template.id[:8], escape(template.prompt.instruction[:60]))
    console.print(table)


@templates.command(name="save")
@click.argument("name")
@click.argument("prompt_file", type=click.Path(exists=True, dir_okay=False))
def templates_save(name: str, prompt_file: str):
    try:
        prompt, _ = load_prompt_file(prompt_file)
        saved = _get_store().save_template(name, prompt)
    except (OSError, ValueError, PromptForgeError) as e:
        _fail(e)
    console.print(f"[green]✓ Saved template '{saved.name}'[/green]")


@templates.command(name="show")
@click.argument("name")
@click.option("--out", type=click.Path(), help="Export the template to a prompt file")
def templates_show(name: str, out: str):
    try:
        template = _get_store().get_template(name)
    except (PromptForgeError, OSError) as e:
        _fail(e)
    if template is None:
        _fail(ValueError(f"Template not found: {name}"))
    _print_prompt(template.prompt, title=escape(template.name))
    if out:
        try:
            dump_prompt_file(out, template.prompt)
        except OSError as e:
            _fail(e)
        console.print(f"[green]✓ Template written to {out}[/green]")


@templates.command(name="delete")
@click.argument("name")
def templates_delete(name: str):
    try:
        deleted = _get_store().delete_template(name)
    except (PromptForgeError, OSError) as e:
        _fail(e)
    if not deleted:
        _fail(ValueError(f"Template not found: {name}"))
    console.print(f"[green]✓ Deleted template '{name}'[/green]")


@main.group()
def scenarios():
    """Manage saved variable scenarios."""


@scenarios.command(name="list")
def scenarios_list():
    try:
        saved = _get_store().list_scenarios()
    except (PromptForgeError, OSError) as e:
        _fail(e)
    if not saved:
        console.print("[dim]No saved scenarios[/dim]")
        return
    for scenario in saved:
        values = ", ".join(f"{k}={v}" for k, v in scenario.values.items())
        console.print(f"[cyan]{escape(scenario.name)}[/cyan]: {escape(values)}")


@scenarios.command(name="save")
@click.argument("name")
@click.option("--var", "var_options", multiple=True, required=True, help="Variable as name=value")
def scenarios_save(name: str, var_options):
    variables = _variables_from(var_options)
    try:
        scenario = _get_store().save_scenario(name, variables)
    except (ValueError, OSError, PromptForgeError) as e:
        _fail(e)
    console.print(f"[green]✓ Saved scenario '{scenario.name}' ({len(scenario.values)} variables)[/green]")


@scenarios.command(name="delete")
@click.argument("name")
def scenarios_delete(name: str):
    try:
        deleted = _get_store().delete_scenario(name)
    except (PromptForgeError, OSError) as e:
        _fail(e)
    if not deleted:
        _fail(ValueError(f"Scenario not found: {name}"))
    console.print(f"[green]✓ Deleted scenario '{name}'[/green]")


@main.group()
def history():
    """Inspect recorded test runs."""


@history.command(name="list")
@click.option("--limit", default=10, show_default=True, help="Entries to show")
def history_list(limit: int):
    from datetime import datetime

    try:
        items = _get_store().list_history()[:limit]
    except (PromptForgeError, OSError) as e:
        _fail(e)
    if not items:
        console.print("[dim]No history[/dim]")
        return
    table = Table("id", "when", "models", "instruction")
    for item in items:
        models = item.model_a or "default"
        if item.is_comparison:
            models = f"{models} vs {item.model_b}"
        table.add_row(
            item.id[:8],
            datetime.fromtimestamp(item.timestamp).strftime("%Y-%m-%d %H:%M"),
            models,
            escape(item.prompt_data.get("instruction", "")[:50]),
        )
    console.print(table)


@history.command(name="clear")
@click.confirmation_option(prompt="Permanently clear all run history?")
def history_clear():
    try:
        _get_store().clear_history()
    except (PromptForgeError, OSError) as e:
        _fail(e)
    console.print("[green]✓ History cleared[/green]")


@main.command()
@click.option("--model", help="Model to chat with (default: configured model)")
@click.option("--system", "system_instruction", help="Replace the default assistant instruction")
def chat(model: str, system_instruction: str):
    """Talk to the PromptForge assistant (type 'exit' to quit, 'clear' to start over)."""
    from .core.chat import ChatSession

    session = ChatSession(_get_client(), system_instruction=system_instruction, model=model)
    console.print("[bold green]PromptForge assistant[/bold green] (type 'exit' to quit)")

    while True:
        try:
            message = console.input("[bold cyan]You:[/bold cyan] ")
        except EOFError:
            break
        command = message.strip().lower()
        if command in ("exit", "quit"):
            break
        if command == "clear":
            session.clear()
            console.print("[dim]Conversation cleared[/dim]")
            continue
        if not command:
            continue

        console.print("[bold magenta]Assistant:[/bold magenta] ", end="")
        try:
            asyncio.run(
                session.send(
                    message,
                    on_chunk=lambda chunk: console.print(chunk, end="", markup=False, highlight=False),
                )
            )
        except PromptForgeError as e:
            console.print()
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            continue
        console.print()


@main.command(name="config-check")
def config_check():
    """Validate the configured LLM provider settings."""
    console.print(f"Provider: [cyan]{config.llm_provider}[/cyan]")
    console.print(f"Model: [cyan]{config.default_model}[/cyan]")
    console.print(f"Analysis model: [cyan]{config.effective_analysis_model}[/cyan]")
    console.print(f"Storage: [cyan]{config.storage_dir}[/cyan]")
    try:
        config.validate()
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(1)
    console.print("[green]✓ Configuration OK[/green]")


if __name__ == "__main__":
    main()
