from __future__ import annotations

"""Terminal rendering helpers for netdiag.

Presentation-only: turns a `Result` into rich tables or JSON. It does not
perform network operations.
"""

import json
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .core import Result

console = Console()
err_console = Console(stderr=True)

KV_FIELD_WIDTH = 26
STATUS_STYLES = {Result.SUCCESS: "green", Result.ERROR: "red", Result.TIMEOUT: "yellow"}
GRADE_STYLES = {"A": "green", "B": "yellow", "F": "red"}
VERDICT_STYLES = {"PASS": "green", "CLEAN": "green", "FAIL": "red", "LISTED": "red", "UNKNOWN": "yellow"}


def _table_width() -> int:
    try:
        return max(80, int(console.size.width) - 2)
    except Exception:
        return 100


def _new_table(*, title: Optional[str] = None, show_header: bool = True) -> Table:
    return Table(
        title=title,
        box=box.SIMPLE,
        show_header=show_header,
        title_justify="left",
        width=_table_width(),
        expand=False,
        pad_edge=False,
    )


def _add_kv_columns(table: Table) -> None:
    value_width = max(24, _table_width() - KV_FIELD_WIDTH - 8)
    table.add_column("Field", style="cyan", width=KV_FIELD_WIDTH, no_wrap=True)
    table.add_column("Value", width=value_width, overflow="fold", no_wrap=False)


def _fmt_value(value: Any) -> str:
    if value is None or value == "" or value == []:
        return "-"
    if isinstance(value, bool):
        return "[green]yes[/green]" if value else "[red]no[/red]"
    if isinstance(value, str) and value in VERDICT_STYLES:
        style = VERDICT_STYLES[value]
        return f"[{style}]{value}[/{style}]"
    if isinstance(value, list):
        return "\n".join(_fmt_value(v) if not isinstance(v, dict) else escape(json.dumps(v, ensure_ascii=False)) for v in value)
    return escape(str(value))


def _is_row_list(value: Any) -> bool:
    return isinstance(value, list) and bool(value) and all(isinstance(v, dict) for v in value)


def _flatten(data: Dict[str, Any], prefix: str = "") -> List[tuple]:
    rows: List[tuple] = []
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict) and value:
            rows.extend(_flatten(value, prefix=f"{name}."))
        elif not _is_row_list(value):
            rows.append((name, value))
    return rows


def _rows_table(title: str, rows: List[Dict[str, Any]]) -> Table:
    columns: List[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)
    table = _new_table(title=escape(title))
    for column in columns:
        table.add_column(escape(column), overflow="fold")
    for row in rows:
        table.add_row(*(_fmt_value(row.get(column)) for column in columns))
    return table


def status_line(result: Result, kind: str, target: str) -> str:
    style = STATUS_STYLES.get(result.status, "white")
    line = f"[bold]{escape(str(kind))}[/bold] {escape(target or '-')}  [{style}]{result.status}[/{style}]  {result.timestamp}"
    if result.grade:
        grade_style = GRADE_STYLES.get(result.grade, "white")
        line += f"  grade [{grade_style}]{result.grade}[/{grade_style}]"
    return line


def print_json_output(result: Result) -> None:
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False, default=str))


def output(result: Result, kind: str, target: str) -> None:
    """Render one result for humans."""
    console.print(status_line(result, kind, target))
    if not result.ok:
        err_console.print(f"[{STATUS_STYLES.get(result.status, 'red')}]{escape(result.message or '-')}[/]")
        return

    data = result.data
    if not isinstance(data, dict):
        console.print(_fmt_value(data))
        return

    table = _new_table(show_header=False)
    _add_kv_columns(table)
    for name, value in _flatten(data):
        table.add_row(escape(name), _fmt_value(value))
    console.print(table)

    for key, value in data.items():
        if _is_row_list(value):
            console.print(_rows_table(key, value))


def print_kinds(kinds: List[str]) -> None:
    table = _new_table(title="Probe kinds", show_header=False)
    table.add_column("Kind", style="cyan")
    for kind in kinds:
        table.add_row(kind)
    console.print(table)
