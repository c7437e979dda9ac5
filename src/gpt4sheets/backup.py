from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from gpt4sheets.config import get_ai_function_names
from gpt4sheets.grid import CellKind, Grid, classify_grid
from gpt4sheets.workbook import WorkbookDocument, format_range, is_backup_sheet

# Prefix that keeps a formula inert when it is stored as cell text.
BACKUP_TEXT_PREFIX = "'"

MSG_REJECTED = "Do not run this on the backup sheet."
MSG_FROZEN = "All custom formulas have been replaced by their values"
MSG_NOTHING_TO_FREEZE = "No custom formulas found to replace in current sheet."
MSG_RESTORED = "All custom formulas have been restored"
MSG_NOTHING_TO_RESTORE = "No custom values found to replace in current sheet."

Notify = Callable[[str], None]


class BackupSheetTargetError(Exception):
    """Raised when a freeze or restore targets a backup sheet."""


class ShapeMismatchError(Exception):
    """Raised when the backup region read for a pass differs in anchor or shape
    from the primary region.

    ``WorkbookDocument.read_grid`` always returns the requested shape, so this
    only fires when a custom sheet reader returns something else. The pass
    aborts before its first write.
    """


@dataclass
class PassResult:
    sheet_name: str
    region: str
    changed: bool
    cells: list[tuple[int, int]] = field(default_factory=list)
    backup_deleted: bool = False


@dataclass
class ActionOutcome:
    status: str  # "done" | "noop" | "rejected" | "failed"
    message: str
    result: PassResult | None = None

    @property
    def ok(self) -> bool:
        return self.status in ("done", "noop")


def to_backup_text(formula: str) -> str:
    return BACKUP_TEXT_PREFIX + formula


def from_backup_text(text: Any) -> str:
    if not isinstance(text, str):
        return ""
    if text.startswith(BACKUP_TEXT_PREFIX):
        return text[len(BACKUP_TEXT_PREFIX):]
    return text


def _has_backup(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def _guard(sheet_name: str) -> None:
    if is_backup_sheet(sheet_name):
        raise BackupSheetTargetError(MSG_REJECTED)


def _paired_backup_grid(document: WorkbookDocument, backup_name: str | None, grid: Grid) -> Grid:
    if backup_name is None:
        empty = [[None] * grid.num_cols for _ in range(grid.num_rows)]
        return Grid(grid.start_row, grid.start_col, empty, [[""] * grid.num_cols for _ in empty])
    backup = document.read_grid(
        backup_name, grid.start_row, grid.start_col, grid.num_rows, grid.num_cols
    )
    if not backup.pairs_with(grid):
        raise ShapeMismatchError(
            f"backup region {backup.shape} at {backup.anchor} does not match "
            f"{grid.shape} at {grid.anchor}"
        )
    return backup


def freeze_grid(
    document: WorkbookDocument,
    sheet_name: str,
    grid: Grid,
    names: Iterable[str] | None = None,
) -> PassResult:
    _guard(sheet_name)
    region = format_range(grid.start_row, grid.start_col, grid.num_rows, grid.num_cols)
    classification = classify_grid(grid, names if names is not None else get_ai_function_names())
    if not classification.any_ai_formula:
        return PassResult(sheet_name, region, changed=False)

    existing = document.find_backup_sheet(sheet_name)
    backup = _paired_backup_grid(document, existing, grid)

    primary_updates: dict[tuple[int, int], Any] = {}
    backup_updates: dict[tuple[int, int], Any] = {}
    frozen: list[tuple[int, int]] = []
    for cell in grid.cells():
        position = grid.absolute(cell.row, cell.col)
        kind = classification.kind_at(cell.row, cell.col)
        if kind is CellKind.AI_FORMULA:
            primary_updates[position] = cell.value
            backup_updates[position] = to_backup_text(cell.formula)
            frozen.append(position)
        elif kind is CellKind.FOREIGN_FORMULA and _has_backup(backup.cell(cell.row, cell.col).value):
            backup_updates[position] = None

    backup_name = existing or document.get_or_create_backup_sheet(sheet_name)
    document.write_values(sheet_name, primary_updates)
    document.write_values(backup_name, backup_updates)
    return PassResult(sheet_name, region, changed=True, cells=frozen)


def restore_grid(document: WorkbookDocument, sheet_name: str, grid: Grid) -> PassResult:
    _guard(sheet_name)
    region = format_range(grid.start_row, grid.start_col, grid.num_rows, grid.num_cols)
    backup_name = document.find_backup_sheet(sheet_name)
    if backup_name is None:
        return PassResult(sheet_name, region, changed=False)
    backup = _paired_backup_grid(document, backup_name, grid)

    formula_updates: dict[tuple[int, int], str] = {}
    backup_updates: dict[tuple[int, int], Any] = {}
    for cell in backup.cells():
        if not _has_backup(cell.value):
            continue
        position = backup.absolute(cell.row, cell.col)
        formula_updates[position] = from_backup_text(cell.value)
        backup_updates[position] = None

    if not formula_updates:
        return PassResult(sheet_name, region, changed=False)
    document.write_formulas(sheet_name, formula_updates)
    document.write_values(backup_name, backup_updates)
    return PassResult(sheet_name, region, changed=True, cells=sorted(formula_updates))


def freeze(
    document: WorkbookDocument,
    sheet_name: str,
    selector: str | None = None,
    names: Iterable[str] | None = None,
) -> PassResult:
    """Replace AI formulas in ``selector`` (default: occupied range) by their values.

    The formulas move to the sheet's backup sheet as inert text so that
    :func:`restore` can bring them back.
    """
    _guard(sheet_name)
    grid = document.get_region(sheet_name, selector)
    return freeze_grid(document, sheet_name, grid, names)


def restore(document: WorkbookDocument, sheet_name: str, selector: str | None = None) -> PassResult:
    _guard(sheet_name)
    grid = document.get_region(sheet_name, selector)
    return restore_grid(document, sheet_name, grid)


def restore_all(document: WorkbookDocument, sheet_name: str) -> PassResult:
    """Restore every backed up formula of the sheet, then drop the backup sheet.

    The region is the union of the primary and backup occupied ranges, so a
    frozen cell whose value was empty is restored too.
    """
    _guard(sheet_name)
    backup_name = document.find_backup_sheet(sheet_name)
    if backup_name is None:
        grid = document.get_region(sheet_name)
        return restore_grid(document, sheet_name, grid)

    bounds = [
        b
        for b in (document.occupied_bounds(sheet_name), document.occupied_bounds(backup_name))
        if b is not None
    ]
    if bounds:
        min_row = min(b[0] for b in bounds)
        min_col = min(b[1] for b in bounds)
        max_row = max(b[2] for b in bounds)
        max_col = max(b[3] for b in bounds)
        grid = document.read_grid(
            sheet_name, min_row, min_col, max_row - min_row + 1, max_col - min_col + 1
        )
    else:
        grid = document.get_region(sheet_name)

    result = restore_grid(document, sheet_name, grid)
    if document.occupied_bounds(backup_name) is None:
        document.delete_sheet(backup_name)
        result.backup_deleted = True
    return result


def _run_action(action: Callable[[], PassResult], done: str, noop: str, notify: Notify) -> ActionOutcome:
    try:
        result = action()
    except BackupSheetTargetError as err:
        outcome = ActionOutcome("rejected", str(err))
    except Exception as err:
        outcome = ActionOutcome("failed", f"Error: {err}")
    else:
        if result.changed:
            outcome = ActionOutcome("done", done, result)
        else:
            outcome = ActionOutcome("noop", noop, result)
    notify(outcome.message)
    return outcome


def formulas_to_values(
    document: WorkbookDocument,
    sheet_name: str,
    selector: str | None = None,
    notify: Notify = print,
    names: Iterable[str] | None = None,
) -> ActionOutcome:
    return _run_action(
        lambda: freeze(document, sheet_name, selector, names),
        MSG_FROZEN,
        MSG_NOTHING_TO_FREEZE,
        notify,
    )


def all_formulas_to_values(
    document: WorkbookDocument,
    sheet_name: str,
    notify: Notify = print,
    names: Iterable[str] | None = None,
) -> ActionOutcome:
    return formulas_to_values(document, sheet_name, None, notify, names)


def values_to_formulas(
    document: WorkbookDocument,
    sheet_name: str,
    selector: str | None = None,
    notify: Notify = print,
) -> ActionOutcome:
    return _run_action(
        lambda: restore(document, sheet_name, selector),
        MSG_RESTORED,
        MSG_NOTHING_TO_RESTORE,
        notify,
    )


def all_values_to_formulas(
    document: WorkbookDocument,
    sheet_name: str,
    notify: Notify = print,
) -> ActionOutcome:
    return _run_action(
        lambda: restore_all(document, sheet_name),
        MSG_RESTORED,
        MSG_NOTHING_TO_RESTORE,
        notify,
    )
