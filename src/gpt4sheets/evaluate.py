from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Iterable

from openpyxl.utils.cell import get_column_letter

from gpt4sheets.backup import BackupSheetTargetError, MSG_REJECTED
from gpt4sheets.config import get_ai_function_names
from gpt4sheets.formula_args import UnsupportedArgumentError, as_text, parse_ai_call, resolve_argument
from gpt4sheets.functions import FUNCTION_ARITY, FUNCTIONS
from gpt4sheets.grid import CellKind, classify_grid
from gpt4sheets.progress import format_seconds
from gpt4sheets.property_store import MemoryPropertyStore
from gpt4sheets.providers import Invoker, invoke_model
from gpt4sheets.workbook import InvalidRangeError, SheetNotFoundError, WorkbookDocument, format_range, is_backup_sheet


@dataclass
class EvaluationReport:
    sheet_name: str
    region: str
    evaluated: list[tuple[int, int]] = field(default_factory=list)
    failed: dict[tuple[int, int], str] = field(default_factory=dict)


def format_cell_value(value: Any) -> Any:
    """Flatten a list or matrix answer into the text a single cell can hold."""
    if not isinstance(value, list):
        return value
    if value and all(isinstance(row, list) for row in value):
        return "\n".join("\t".join(as_text(item) for item in row) for row in value)
    return "\n".join(as_text(item) for item in value)


def evaluate_formula(
    document: WorkbookDocument,
    sheet_name: str,
    formula: str,
    *,
    store: MemoryPropertyStore,
    invoker: Invoker = invoke_model,
) -> Any:
    parsed = parse_ai_call(formula)
    function = FUNCTIONS.get(parsed.name)
    if function is None:
        return f"Error: {parsed.name} cannot be evaluated here"
    if len(parsed.args) > FUNCTION_ARITY[parsed.name]:
        return f"Error: too many arguments for {parsed.name}"
    args = [resolve_argument(arg, document, sheet_name) for arg in parsed.args]
    return function(*args, store=store, invoker=invoker)


def evaluate_region(
    document: WorkbookDocument,
    sheet_name: str,
    selector: str | None = None,
    *,
    store: MemoryPropertyStore,
    invoker: Invoker = invoke_model,
    names: Iterable[str] | None = None,
) -> EvaluationReport:
    """Compute every AI formula of the region and cache the results as cell values."""
    if is_backup_sheet(sheet_name):
        raise BackupSheetTargetError(MSG_REJECTED)
    grid = document.get_region(sheet_name, selector)
    classification = classify_grid(grid, names if names is not None else get_ai_function_names())
    report = EvaluationReport(
        sheet_name, format_range(grid.start_row, grid.start_col, grid.num_rows, grid.num_cols)
    )
    targets = [
        cell for cell in grid.cells() if classification.kind_at(cell.row, cell.col) is CellKind.AI_FORMULA
    ]
    for index, cell in enumerate(targets, start=1):
        row, col = grid.absolute(cell.row, cell.col)
        call_label = f"[cell {index}/{len(targets)}][{get_column_letter(col)}{row}]"
        print(f"{call_label} Calling model...")
        call_start = time.perf_counter()
        try:
            value = evaluate_formula(document, sheet_name, cell.formula, store=store, invoker=invoker)
        except (UnsupportedArgumentError, InvalidRangeError, SheetNotFoundError) as err:
            value = f"Error: {err}"
        value = format_cell_value(value)
        document.set_cached_value(sheet_name, row, col, value)
        if isinstance(value, str) and value.startswith("Error"):
            report.failed[(row, col)] = value
            print(f"{call_label} {value}")
        else:
            report.evaluated.append((row, col))
            print(f"{call_label} Done in {format_seconds(time.perf_counter() - call_start)}")
    return report
