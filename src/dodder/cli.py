"""Command-line interface for dodder."""

from __future__ import annotations

import argparse
import logging
from importlib import metadata
from pathlib import Path
from typing import cast

from .agent.loop import AgentLoop
from .agent.models import GenerationParams, ProjectContext, SessionTurn
from .config import AppConfig
from .errors import BackendError
from .llm.client import OllamaClient
from .llm.prompt import build_system_prompt
from .shell import ShellAdapter, create_shell_adapter, resolve_shell

LOGGER = logging.getLogger(__name__)

EXIT_WORDS = {"exit", "quit", "q", ":q"}
INSTRUCTION_SUFFIXES = {".txt", ".md"}


class CLIArgs(argparse.Namespace):
    command: str | None
    model: str | None
    description: str | None
    dir: str | None
    instructions: str | None
    instr: str | None
    temperature: float | None
    max_tokens: int | None
    top_p: float | None
    frequency_penalty: float | None
    presence_penalty: float | None


def _version() -> str:
    try:
        return metadata.version("dodder")
    except metadata.PackageNotFoundError:
        return "0.0.0"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dodder",
        description="Local LLM coding agent that plans and runs shell actions",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_version()}",
        help="Output the current version of dodder.",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("list", help="List the models available from the Ollama server.")

    run = subparsers.add_parser("run", help="Run dodder with the specified model.")
    run.add_argument("model", help="Name of the model to use")
    run.add_argument("description", nargs="?", help="Description of what you want to do")
    run.add_argument(
        "--dir",
        help="Project directory (default: config cwd or the current directory).",
    )
    run.add_argument("--instructions", help="Instructions file (.txt or .md).")
    run.add_argument("--instr", help="Instructions text.")
    run.add_argument("--temperature", type=float, help="Model temperature (default: 0.7).")
    run.add_argument(
        "--max-tokens",
        type=int,
        help="Maximum tokens for each response (default: 1500).",
    )
    run.add_argument("--top-p", type=float, help="Nucleus sampling value (default: 1.0).")
    run.add_argument(
        "--frequency-penalty",
        type=float,
        help="Frequency penalty (default: 0.0).",
    )
    run.add_argument(
        "--presence-penalty",
        type=float,
        help="Presence penalty (default: 0.0).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = cast(CLIArgs, parser.parse_args(argv))
    config = AppConfig.from_env()
    logging.basicConfig(level=getattr(logging, config.log_level, logging.WARNING))

    if args.command == "list":
        return _list_models(config)
    if args.command == "run":
        return _run(args, config)
    parser.print_help()
    return 1


def _list_models(config: AppConfig) -> int:
    print("Listing all available models from Ollama...\n")
    client = OllamaClient(
        model=config.model or "",
        host=config.ollama_host,
        timeout=config.request_timeout,
    )
    try:
        models = client.list_models()
    except BackendError as exc:
        print(f"Could not list models: {exc}")
        return 2
    if not models:
        print("No models found.")
        return 0
    for model in models:
        print(f"- {model}")
    return 0


def _run(args: CLIArgs, config: AppConfig) -> int:
    description = args.description or input("Please describe what you want to do: ").strip()
    if not description:
        print("No project description provided.")
        return 1

    configured_dir = args.dir if args.dir is not None else config.working_directory
    project_root = Path(configured_dir or Path.cwd()).expanduser().resolve()
    if not project_root.is_dir():
        print(f"Invalid project directory: {configured_dir}")
        return 1

    try:
        instructions = load_instructions(args.instructions, args.instr)
    except ValueError as exc:
        print(str(exc))
        return 1

    try:
        shell = _select_shell(config)
    except ValueError as exc:
        print(str(exc))
        return 1

    context = ProjectContext(
        root=str(project_root),
        model=cast(str, args.model),
        instructions=instructions,
        params=_generation_params(args, config.generation),
    )
    client = OllamaClient(
        model=context.model,
        host=config.ollama_host,
        timeout=config.request_timeout,
        json_mode=config.json_mode,
    )
    loop = AgentLoop(
        client=client,
        shell=shell,
        context=context,
        system_prompt=build_system_prompt(
            shell_name=shell.name,
            project_root=context.root,
            instructions=context.instructions,
            base_prompt=config.system_prompt,
        ),
        log_dir=config.log_dir,
        max_steps=config.max_steps,
        max_backend_attempts=config.max_backend_attempts,
        max_correction_attempts=config.max_correction_attempts,
        max_context_chars=config.max_context_chars,
        max_output_chars=config.max_output_chars,
        command_timeout=config.command_timeout,
    )
    LOGGER.debug("shell_adapter_selected", extra={"shell": shell.name})
    print(f"Ollama model set to: {context.model}")

    turns = loop.start(description)
    while True:
        for turn in turns:
            print(render_turn(turn))
        if loop.state == "done":
            return 1

        try:
            follow_up = input("\nYou: ").strip()
        except (EOFError, KeyboardInterrupt):
            follow_up = "exit"
        if not follow_up or follow_up.lower() in EXIT_WORDS:
            loop.stop()
            print("Session ended.")
            return 0
        turns = loop.submit(follow_up)


def load_instructions(path_value: str | None, inline_text: str | None) -> str | None:
    """Combine an instructions file and inline instruction text."""
    sections: list[str] = []
    if path_value:
        path = Path(path_value).expanduser()
        if path.suffix.lower() not in INSTRUCTION_SUFFIXES:
            msg = f"Instructions file must be .txt or .md: {path_value}"
            raise ValueError(msg)
        if not path.is_file():
            msg = f"Instructions file not found: {path_value}"
            raise ValueError(msg)
        sections.append(path.read_text(encoding="utf-8").strip())
    if inline_text and inline_text.strip():
        sections.append(inline_text.strip())
    combined = "\n\n".join(section for section in sections if section)
    return combined or None


def _select_shell(config: AppConfig) -> ShellAdapter:
    if config.shell:
        return create_shell_adapter(config.shell)
    return resolve_shell()


def _generation_params(args: CLIArgs, defaults: GenerationParams) -> GenerationParams:
    return GenerationParams(
        temperature=defaults.temperature if args.temperature is None else args.temperature,
        max_tokens=defaults.max_tokens if args.max_tokens is None else args.max_tokens,
        top_p=defaults.top_p if args.top_p is None else args.top_p,
        frequency_penalty=(
            defaults.frequency_penalty
            if args.frequency_penalty is None
            else args.frequency_penalty
        ),
        presence_penalty=(
            defaults.presence_penalty if args.presence_penalty is None else args.presence_penalty
        ),
    )


def _render_status(state: str) -> str:
    return {
        "planning": "planning",
        "executing": "running",
        "awaiting_user": "needs input",
        "done": "ended",
    }.get(state, state)


def render_turn(turn: SessionTurn) -> str:
    lines = [f"=== {_render_status(turn.state)} ==="]
    action = turn.action
    if action is not None:
        if action.user_message:
            lines.append(action.user_message)
        if action.command:
            lines.append("[command]")
            lines.append(f"$ {action.command}  (in {action.working_directory})")

    result = turn.result
    if result is not None:
        output = "\n".join(part for part in (result.stdout.rstrip(), result.stderr.rstrip()) if part)
        if output:
            lines.append("[output]")
            lines.append(output)
        if result.error:
            lines.append(f"[{'incomplete' if result.cancelled else 'failed'}] {result.error}")

    if turn.notice:
        lines.append("[notice]")
        lines.append(turn.notice)
    if turn.error and turn.error != turn.notice:
        lines.append("[error]")
        lines.append(turn.error)
    if action is not None and not action.runs_command and action.next_step:
        lines.append("[next]")
        lines.append(action.next_step)
    return "\n".join(lines)


if __name__ == "__main__":
    raise SystemExit(main())
