"""
Command line interface for validating, running and generating workflows.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml

from .config import SettingsManager, configure_logging
from .service import PromptLabService
from .workflows import (
    InMemoryPromptStore,
    Workflow,
    WorkflowError,
    WorkflowExecutionError,
    WorkflowGenerationError,
    sort_tasks,
)

logger = logging.getLogger(__name__)


def _load_settings(env_file: Optional[str], provider: Optional[str] = None) -> SettingsManager:
    settings = SettingsManager(env_file=env_file).load()
    if provider:
        settings.set_setting("model_provider", provider)
    configure_logging(settings.get_setting("log_level", "INFO"), settings.get_setting("log_file"))
    return settings


def _read_json(file_path: str) -> Any:
    return json.loads(Path(file_path).read_text(encoding="utf-8"))


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    raise SystemExit(1)


def _describe_error(error: Exception) -> str:
    if isinstance(error, WorkflowExecutionError):
        return f'task "{error.task_name}" ({error.task_id}): {error}'
    return str(error)


async def _run_workflow(
    service: PromptLabService, workflow: Workflow, user_input: Dict[str, Any]
) -> Dict[str, Any]:
    try:
        return (await service.run_workflow(workflow, user_input)).data_store
    finally:
        await service.shutdown()


async def _run_task(service: PromptLabService, task: Dict[str, Any], data_store: Optional[Dict[str, Any]]) -> Any:
    try:
        return await service.run_single_task(task, data_store)
    finally:
        await service.shutdown()


async def _generate_workflow(service: PromptLabService, user_request: str) -> Workflow:
    try:
        return await service.generate_workflow(user_request)
    finally:
        await service.shutdown()


@click.group(help="Run dependency-ordered LLM task workflows")
def cli():
    """Validate, run and generate promptlab workflows."""
    pass


@cli.command()
@click.argument("workflow_file", type=click.Path(exists=True, dir_okay=False))
def validate(workflow_file):
    """Check a workflow file and print its execution order."""
    try:
        workflow = Workflow.from_file(workflow_file)
    except (WorkflowError, ValueError) as e:
        _fail(str(e))

    errors = workflow.validate_structure()
    if errors:
        for error in errors:
            click.echo(f"- {error}", err=True)
        _fail(f"{workflow.name} has {len(errors)} problem(s)")

    click.echo(f"Workflow '{workflow.name}' is valid. Execution order:")
    for index, task in enumerate(sort_tasks(workflow.tasks).order, start=1):
        click.echo(f"  {index}. {task.name} ({task.id}) -> {task.output_key}")


@cli.command()
@click.argument("workflow_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--input-text", help="Text stored as userInput.text")
@click.option(
    "--input-json",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file whose object becomes userInput",
)
@click.option(
    "--prompts",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML or JSON file of linked prompts",
)
@click.option("--provider", type=click.Choice(["echo", "openai"]), help="Override the model provider")
@click.option("--env-file", type=click.Path(dir_okay=False), help="Path to a .env file")
def run(workflow_file, input_text, input_json, prompts, provider, env_file):
    """Run a workflow and print the final data store as JSON."""
    try:
        workflow = Workflow.from_file(workflow_file)
        user_input = _read_json(input_json) if input_json else {}
        if not isinstance(user_input, dict):
            raise ValueError("--input-json must contain a JSON object")
        if input_text is not None:
            user_input["text"] = input_text

        settings = _load_settings(env_file, provider)
        resolver = InMemoryPromptStore.from_file(prompts) if prompts else None
        service = PromptLabService.from_settings(settings, prompt_resolver=resolver)
        data_store = asyncio.run(_run_workflow(service, workflow, user_input))
    except (WorkflowError, ValueError, OSError) as e:
        logger.debug(f"Workflow run failed: {e}", exc_info=True)
        _fail(_describe_error(e))

    click.echo(_dump(data_store))


@cli.command("run-task")
@click.argument("task_json", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--store-json",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file holding the data store the task reads from",
)
@click.option(
    "--prompts",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML or JSON file of linked prompts",
)
@click.option("--provider", type=click.Choice(["echo", "openai"]), help="Override the model provider")
@click.option("--env-file", type=click.Path(dir_okay=False), help="Path to a .env file")
def run_task(task_json, store_json, prompts, provider, env_file):
    """Execute a single task definition and print its output as JSON."""
    try:
        task = _read_json(task_json)
        data_store = _read_json(store_json) if store_json else None
        settings = _load_settings(env_file, provider)
        resolver = InMemoryPromptStore.from_file(prompts) if prompts else None
        service = PromptLabService.from_settings(settings, prompt_resolver=resolver)
        result = asyncio.run(_run_task(service, task, data_store))
    except (WorkflowError, ValueError, OSError) as e:
        logger.debug(f"Task run failed: {e}", exc_info=True)
        _fail(str(e))

    click.echo(_dump(result))


@cli.command()
@click.argument("request")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False),
    help="Write the workflow to this file (.yaml/.yml for YAML, JSON otherwise)",
)
@click.option("--provider", type=click.Choice(["echo", "openai"]), help="Override the model provider")
@click.option("--env-file", type=click.Path(dir_okay=False), help="Path to a .env file")
def generate(request, output, provider, env_file):
    """Generate a workflow from a natural-language REQUEST."""
    try:
        settings = _load_settings(env_file, provider)
        service = PromptLabService.from_settings(settings)
        workflow = asyncio.run(_generate_workflow(service, request))
    except WorkflowGenerationError as e:
        logger.debug(f"Workflow generation failed: {e}", exc_info=True)
        for error in e.validation_errors:
            click.echo(f"- {error}", err=True)
        _fail(f"{e.error_type}: {e}")
    except (WorkflowError, ValueError, OSError) as e:
        _fail(str(e))

    data = workflow.to_dict()
    if not output:
        click.echo(_dump(data))
        return

    path = Path(output)
    if path.suffix.lower() in (".yaml", ".yml"):
        text = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    else:
        text = _dump(data) + "\n"
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        _fail(str(e))
    click.echo(f"Wrote workflow '{workflow.name}' ({len(workflow.tasks)} tasks) to {path}")


def main():
    cli()


if __name__ == "__main__":
    main()
