from __future__ import annotations

from collections import Counter
from typing import Mapping

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .executor import ExecutionResult, ExecutionState
from .nodes import iter_nodes
from .parser import ParseResult
from .utils import to_template_text
from .validation import ValidationIssue, ValidationReport

# Color constants for status indicators
SUCCESS_COLOR = "green"
WARNING_COLOR = "yellow"
ERROR_COLOR = "red"
DIM_COLOR = "dim"

# Symbol indicators for quick scanning
SUCCESS_SYMBOL = "✓"
WARNING_SYMBOL = "⚠"
ERROR_SYMBOL = "✗"
IDLE_SYMBOL = "○"


class ScriptSummaryRenderer:
    """Renders parsed scripts and execution results as Rich tables."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render_scripts(self, scripts: Mapping[str, ParseResult]) -> None:
        if not scripts:
            self.console.print(f"[{WARNING_COLOR}]{WARNING_SYMBOL} No scripts found.[/{WARNING_COLOR}]")
            return

        table = Table(title="Scripts", show_lines=False)
        table.add_column("Tag", style="cyan", no_wrap=True)
        table.add_column("Trigger", no_wrap=True)
        table.add_column("Actions", justify="right")
        table.add_column("Kinds", overflow="fold")
        table.add_column("Warnings", justify="right")

        for tag, result in scripts.items():
            warnings = len(result.warnings)
            warning_style = WARNING_COLOR if warnings else DIM_COLOR
            for index, trigger in enumerate(result.config.triggers):
                kinds = Counter(node.kind for node in iter_nodes(trigger.actions))
                table.add_row(
                    tag if index == 0 else "",
                    trigger.kind,
                    str(len(trigger.actions)),
                    ", ".join(f"{kind}×{count}" if count > 1 else kind for kind, count in kinds.items()),
                    f"[{warning_style}]{warnings}[/{warning_style}]" if index == 0 else "",
                )
        self.console.print(table)

        for tag, result in scripts.items():
            for warning in result.warnings:
                self.console.print(f"[{WARNING_COLOR}]{WARNING_SYMBOL} {tag}: {escape(str(warning))}[/{WARNING_COLOR}]")

    def render_result(self, tag: str, result: ExecutionResult) -> None:
        if result.state is ExecutionState.IDLE:
            header = Text(f"{IDLE_SYMBOL} {tag}: no matching trigger", style=DIM_COLOR)
            self.console.print(header)
            return

        table = Table(show_header=True, box=None, padding=(0, 1))
        table.add_column("Variable", style="cyan", no_wrap=True)
        table.add_column("Value", overflow="fold")
        for name, value in sorted(result.context.variables.items()):
            if name == "config":
                continue
            table.add_row(name, escape(to_template_text(value)))

        if result.success:
            title = f"[bold {SUCCESS_COLOR}]{SUCCESS_SYMBOL} {tag} ({result.context.trigger_kind})[/bold {SUCCESS_COLOR}]"
            style = SUCCESS_COLOR
        else:
            title = f"[bold {ERROR_COLOR}]{ERROR_SYMBOL} {tag}: {escape(str(result.error))}[/bold {ERROR_COLOR}]"
            style = ERROR_COLOR
        self.console.print(Panel(table, title=title, border_style=style, padding=(1, 2)))


class ValidationFormatter:
    """Prints a ValidationReport grouped by severity."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_report(self, report: ValidationReport) -> None:
        if report.errors:
            self._format_issues(report.errors, "error", "Validation Errors", "bold red")
        if report.warnings:
            self._format_issues(report.warnings, "warning", "Validation Warnings", "bold yellow")

        if not report.errors and not report.warnings:
            self.console.print(f"[bold green]{SUCCESS_SYMBOL} Settings passed validation.[/bold green]")
        elif not report.errors:
            self.console.print(f"[bold green]{SUCCESS_SYMBOL} Settings passed validation (with warnings).[/bold green]")

    def _format_issues(self, issues: list[ValidationIssue], severity: str, header_text: str, header_style: str) -> None:
        self.console.print(f"\n[{header_style}]{header_text}: {len(issues)} {severity}(s) detected[/{header_style}]")
        grouped: dict[str, list[ValidationIssue]] = {}
        for issue in issues:
            grouped.setdefault(issue.path.split(".", 1)[0].split("[", 1)[0], []).append(issue)

        for section, section_issues in grouped.items():
            table = Table(show_header=False, show_edge=False, pad_edge=False, box=None, padding=(0, 1))
            table.add_column("Path", style="cyan", overflow="fold")
            table.add_column("Message", overflow="fold")
            for issue in section_issues:
                table.add_row(issue.path, f"{escape(issue.message)} [dim]({issue.code})[/dim]")
            self.console.print(
                Panel(
                    table,
                    title=f"[bold]{section}[/bold]",
                    border_style="red" if severity == "error" else "yellow",
                    padding=(1, 2),
                )
            )
