from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

import yaml
from rich.console import Console
from rich.markup import escape

from .buffer import MemoryBuffer
from .config import EngineSettings, build_settings, load_settings
from .connector import ScriptConnector
from .documents import FileDocumentStore, HttpxClient
from .errors import TagScriptError
from .executor import Engine, ExecutionResult
from .logging_utils import configure_logging
from .nodes import TRIGGER_KINDS
from .notifications import NotificationService
from .parser import load_scripts
from .reporting import ScriptSummaryRenderer, ValidationFormatter
from .services import CursorPosition, Services
from .tasks import DocumentQueryService, DocumentTaskEditor, work_item_from_line
from .utils import load_yaml_file
from .validation import validate_settings_data
from .version import __version__

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tagscript", description="Run tag scripts written as nested bullet lists.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", default="INFO", help="Console log level (default: INFO)")
    parser.add_argument("--log-file", type=Path, help="Also write a debug log to this file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check", help="Parse a scripts document and list its tags and triggers")
    check.add_argument("scripts", type=Path, help="Document holding the #tag scripts")

    run = subparsers.add_parser("run", help="Run one trigger of a tag script against a document line")
    run.add_argument("scripts", type=Path, help="Document holding the #tag scripts")
    run.add_argument("--tag", required=True, help="Tag whose script to run, e.g. #podcast")
    run.add_argument("--document", type=Path, required=True, help="Document containing the work item")
    run.add_argument("--line", type=int, required=True, help="1-based line number of the work item")
    run.add_argument("--trigger", default="onTrigger", choices=TRIGGER_KINDS, help="Trigger to run")
    run.add_argument("--settings", type=Path, help="Settings YAML (document_root, http, shell, ...)")
    run.add_argument("--data", help="JSON payload exposed as {{data}} for onData")

    validate = subparsers.add_parser("validate-settings", help="Validate a settings YAML file")
    validate.add_argument("settings", type=Path, help="Settings YAML file")
    return parser


def _load_settings(args: argparse.Namespace) -> EngineSettings:
    if args.settings is not None:
        return load_settings(args.settings)
    return build_settings({"document_root": str(args.document.resolve().parent)})


def _command_check(args: argparse.Namespace, console: Console) -> int:
    try:
        scripts = load_scripts(args.scripts.read_text(encoding="utf-8"))
    except OSError as exc:
        console.print(f"[bold red]✗ Could not read {args.scripts}: {escape(str(exc))}[/bold red]")
        return 1
    ScriptSummaryRenderer(console).render_scripts(scripts)
    return 0 if scripts else 1


def _command_validate(args: argparse.Namespace, console: Console) -> int:
    try:
        data = load_yaml_file(args.settings)
    except (OSError, yaml.YAMLError) as exc:
        console.print(f"[bold red]✗ Could not read {args.settings}: {escape(str(exc))}[/bold red]")
        return 1
    report = validate_settings_data(data)
    ValidationFormatter(console).format_report(report)
    return 0 if report.is_valid else 1


async def _run_script(args: argparse.Namespace, settings: EngineSettings) -> ExecutionResult | None:
    scripts = load_scripts(args.scripts.read_text(encoding="utf-8"))
    tag = args.tag if args.tag.startswith("#") else f"#{args.tag}"
    if tag not in scripts:
        raise TagScriptError(f"No script for {tag} in {args.scripts}")
    config = scripts[tag].config

    store = FileDocumentStore(settings.document_root)
    document = store.relative(args.document)
    lines = (await store.read(document)).split("\n")
    index = args.line - 1
    if not 0 <= index < len(lines):
        raise TagScriptError(f"Line {args.line} is outside {document} ({len(lines)} lines)")
    item = work_item_from_line(lines[index], document, index)

    async with HttpxClient(timeout=settings.http.timeout, user_agent=settings.http.user_agent) as http:
        services = Services(
            documents=store,
            tasks=DocumentTaskEditor(store, indent_unit=settings.indent_unit),
            query=DocumentQueryService(store),
            http=http,
            notifier=NotificationService(settings.notifications),
        )
        engine = Engine(services, settings)
        connector = ScriptConnector(tag, engine, config)

        if args.trigger == "onEnter":
            buffer = MemoryBuffer("\n".join(lines), cursor=CursorPosition(index, len(lines[index])))
            result = await connector.on_enter(buffer, document=document)
            await store.write(document, buffer.text)
            return result
        if args.trigger == "onData":
            data: Any = json.loads(args.data) if args.data else None
            return await connector.on_data(data, document=document, item=item)
        if item is None:
            raise TagScriptError(f"Line {args.line} of {document} is not a task: {lines[index]}")
        if args.trigger == "onTrigger":
            return await connector.on_trigger(item)
        if args.trigger == "onReset":
            return await connector.on_reset(item)
        return await engine.run(config, args.trigger, item=item, initial_vars={"config": dict(connector.options)})


def _command_run(args: argparse.Namespace, console: Console) -> int:
    try:
        settings = _load_settings(args)
        result = asyncio.run(_run_script(args, settings))
    except (OSError, ValueError, TagScriptError) as exc:
        console.print(f"[bold red]✗ {escape(str(exc))}[/bold red]")
        return 1
    if result is None:
        console.print(f"[dim]{args.tag} has no {args.trigger} trigger[/dim]")
        return 0
    ScriptSummaryRenderer(console).render_result(args.tag, result)
    return 0 if result.success else 1


def main(argv: Sequence[str] | None = None, *, console: Console | None = None) -> int:
    args = build_parser().parse_args(argv)
    console = console or Console()
    configure_logging(args.log_level, log_file=args.log_file, console=console)
    if args.command == "check":
        return _command_check(args, console)
    if args.command == "validate-settings":
        return _command_validate(args, console)
    return _command_run(args, console)


if __name__ == "__main__":
    sys.exit(main())
