from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any, Mapping

from openpyxl import Workbook, load_workbook
from openpyxl.utils.cell import get_column_letter, range_boundaries

from gpt4sheets.config import BACKUP_SHEET_SUFFIX, MAX_SHEET_TITLE_LENGTH
from gpt4sheets.grid import Grid, formula_text

_NAME_HASH_LENGTH = 6


class SheetNotFoundError(KeyError):
    def __str__(self) -> str:
        return f"sheet not found: {self.args[0]}"


class InvalidRangeError(ValueError):
    pass


class BackupNameCollisionError(ValueError):
    """Raised when two primary sheets resolve to the same backup sheet name."""


def backup_sheet_name(primary_name: str) -> str:
    """Backup sheet title for ``primary_name``, at most 31 characters.

    Names too long to take the suffix are shortened and tagged with a hash
    of the full name, so sheets sharing a long prefix stay apart.
    """
    if len(primary_name) + len(BACKUP_SHEET_SUFFIX) <= MAX_SHEET_TITLE_LENGTH:
        return primary_name + BACKUP_SHEET_SUFFIX
    digest = hashlib.sha1(primary_name.encode("utf-8")).hexdigest()[:_NAME_HASH_LENGTH]
    keep = MAX_SHEET_TITLE_LENGTH - len(BACKUP_SHEET_SUFFIX) - len(digest) - 1
    return f"{primary_name[:keep]}~{digest}{BACKUP_SHEET_SUFFIX}"


def is_backup_sheet(name: str) -> bool:
    return name.endswith(BACKUP_SHEET_SUFFIX)


def parse_range(selector: str) -> tuple[int, int, int, int]:
    """Return ``(start_row, start_col, num_rows, num_cols)`` for an A1 range."""
    text = (selector or "").strip().replace("$", "")
    if "!" in text:
        text = text.rsplit("!", 1)[1]
    try:
        min_col, min_row, max_col, max_row = range_boundaries(text)
    except (TypeError, ValueError) as err:
        raise InvalidRangeError(f"invalid range: {selector!r}") from err
    if None in (min_col, min_row, max_col, max_row):
        raise InvalidRangeError(f"range must be bounded on both axes: {selector!r}")
    return min_row, min_col, max_row - min_row + 1, max_col - min_col + 1


def format_range(start_row: int, start_col: int, num_rows: int, num_cols: int) -> str:
    first = f"{get_column_letter(start_col)}{start_row}"
    if num_rows == 1 and num_cols == 1:
        return first
    last = f"{get_column_letter(start_col + num_cols - 1)}{start_row + num_rows - 1}"
    return f"{first}:{last}"


def _has_content(cell: Any) -> bool:
    return cell is not None and cell.value is not None and cell.value != ""


class WorkbookDocument:
    """An .xlsx workbook opened for formula/value work.

    openpyxl keeps formulas and cached values in separate workbooks (the
    second one loaded with ``data_only=True``); this class pairs them. Only
    the formulas workbook is saved, so cached values are not written back.
    """

    def __init__(
        self,
        formulas_workbook: Workbook,
        values_workbook: Workbook | None = None,
        path: str | Path | None = None,
    ) -> None:
        self.formulas_workbook = formulas_workbook
        self.values_workbook = values_workbook
        self.path = Path(path) if path is not None else None
        self._cache: dict[tuple[str, int, int], Any] = {}

    @classmethod
    def load(cls, path: str | Path) -> "WorkbookDocument":
        workbook_path = Path(path)
        if not workbook_path.exists():
            raise FileNotFoundError(f"workbook not found: {workbook_path}")
        formulas = load_workbook(workbook_path, data_only=False)
        values = load_workbook(workbook_path, data_only=True)
        return cls(formulas, values, workbook_path)

    @property
    def sheet_names(self) -> list[str]:
        return list(self.formulas_workbook.sheetnames)

    @property
    def active_sheet_name(self) -> str:
        return self.formulas_workbook.active.title

    def has_sheet(self, name: str) -> bool:
        return name in self.formulas_workbook.sheetnames

    def _sheet(self, name: str):
        if not self.has_sheet(name):
            raise SheetNotFoundError(name)
        return self.formulas_workbook[name]

    def _values_sheet(self, name: str):
        if self.values_workbook is None or name not in self.values_workbook.sheetnames:
            return None
        return self.values_workbook[name]

    def formula_at(self, sheet_name: str, row: int, col: int) -> str:
        cell = self._sheet(sheet_name)._cells.get((row, col))
        if cell is None or cell.data_type != "f":
            return ""
        return formula_text(cell.value)

    def value_at(self, sheet_name: str, row: int, col: int) -> Any:
        key = (sheet_name, row, col)
        if key in self._cache:
            return self._cache[key]
        values_ws = self._values_sheet(sheet_name)
        if values_ws is not None:
            cell = values_ws._cells.get((row, col))
            return cell.value if cell is not None else None
        cell = self._sheet(sheet_name)._cells.get((row, col))
        if cell is None or cell.data_type == "f":
            return None
        return cell.value

    def occupied_bounds(self, sheet_name: str) -> tuple[int, int, int, int] | None:
        """Bounding box ``(min_row, min_col, max_row, max_col)`` of non-empty cells."""
        ws = self._sheet(sheet_name)
        candidates = {key for key, cell in ws._cells.items() if _has_content(cell)}
        values_ws = self._values_sheet(sheet_name)
        if values_ws is not None:
            candidates |= {key for key, cell in values_ws._cells.items() if _has_content(cell)}
        candidates |= {(row, col) for (name, row, col) in self._cache if name == sheet_name}
        coordinates = {
            (row, col)
            for row, col in candidates
            if self.formula_at(sheet_name, row, col)
            or self.value_at(sheet_name, row, col) not in (None, "")
        }
        if not coordinates:
            return None
        rows = [row for row, _ in coordinates]
        cols = [col for _, col in coordinates]
        return min(rows), min(cols), max(rows), max(cols)

    def get_region(self, sheet_name: str, selector: str | None = None) -> Grid:
        if selector:
            start_row, start_col, num_rows, num_cols = parse_range(selector)
        else:
            bounds = self.occupied_bounds(sheet_name)
            if bounds is None:
                start_row, start_col, num_rows, num_cols = 1, 1, 1, 1
            else:
                min_row, min_col, max_row, max_col = bounds
                start_row, start_col = min_row, min_col
                num_rows, num_cols = max_row - min_row + 1, max_col - min_col + 1
        return self.read_grid(sheet_name, start_row, start_col, num_rows, num_cols)

    def read_grid(
        self, sheet_name: str, start_row: int, start_col: int, num_rows: int, num_cols: int
    ) -> Grid:
        self._sheet(sheet_name)
        values = []
        formulas = []
        for row in range(start_row, start_row + num_rows):
            values.append(
                [self.value_at(sheet_name, row, col) for col in range(start_col, start_col + num_cols)]
            )
            formulas.append(
                [self.formula_at(sheet_name, row, col) for col in range(start_col, start_col + num_cols)]
            )
        return Grid(start_row=start_row, start_col=start_col, values=values, formulas=formulas)

    def write_values(self, sheet_name: str, updates: Mapping[tuple[int, int], Any]) -> None:
        ws = self._sheet(sheet_name)
        for (row, col), value in updates.items():
            cell = ws.cell(row=row, column=col)
            cell.value = value
            if isinstance(value, str) and value.startswith("="):
                # literal text, not a formula
                cell.data_type = "s"
            self._cache[(sheet_name, row, col)] = value

    def write_formulas(self, sheet_name: str, updates: Mapping[tuple[int, int], str]) -> None:
        ws = self._sheet(sheet_name)
        for (row, col), formula in updates.items():
            ws.cell(row=row, column=col).value = formula

    def set_cached_value(self, sheet_name: str, row: int, col: int, value: Any) -> None:
        self._sheet(sheet_name)
        self._cache[(sheet_name, row, col)] = value

    def _backup_name_for(self, primary_name: str) -> str:
        name = backup_sheet_name(primary_name)
        for other in self.sheet_names:
            if other != primary_name and not is_backup_sheet(other) and backup_sheet_name(other) == name:
                raise BackupNameCollisionError(
                    f"sheets {primary_name!r} and {other!r} would share backup sheet {name!r}"
                )
        return name

    def find_backup_sheet(self, primary_name: str) -> str | None:
        name = self._backup_name_for(primary_name)
        return name if self.has_sheet(name) else None

    def get_or_create_backup_sheet(self, primary_name: str) -> str:
        name = self._backup_name_for(primary_name)
        if not self.has_sheet(name):
            ws = self.formulas_workbook.create_sheet(title=name)
            ws.sheet_state = "hidden"
        return name

    def delete_sheet(self, name: str) -> None:
        self.formulas_workbook.remove(self._sheet(name))
        values_ws = self._values_sheet(name)
        if values_ws is not None:
            self.values_workbook.remove(values_ws)
        self._cache = {key: value for key, value in self._cache.items() if key[0] != name}

    def save(self, path: str | Path | None = None) -> Path:
        target = Path(path) if path is not None else self.path
        if target is None:
            raise ValueError("no path to save the workbook to")
        self.formulas_workbook.save(target)
        self.path = target
        return target
