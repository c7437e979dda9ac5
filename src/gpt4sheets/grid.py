from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Iterator

_UDF_PREFIX = "_XLUDF."


class CellKind(str, Enum):
    AI_FORMULA = "ai_formula"
    FOREIGN_FORMULA = "foreign_formula"
    STATIC_VALUE = "static_value"


@dataclass(frozen=True)
class Cell:
    """One cell of a grid; ``row`` and ``col`` are 1-indexed and grid-relative."""

    row: int
    col: int
    value: Any
    formula: str

    @property
    def position(self) -> tuple[int, int]:
        return self.row, self.col


@dataclass
class Grid:
    """Rectangular snapshot of a sheet region.

    ``values`` holds the last computed values and ``formulas`` the formula
    text ("" where the cell has none). Both are row-major lists of the same
    shape. ``start_row``/``start_col`` anchor the grid inside its sheet.
    """

    start_row: int
    start_col: int
    values: list[list[Any]]
    formulas: list[list[str]]

    def __post_init__(self) -> None:
        if len(self.values) != len(self.formulas):
            raise ValueError("values and formulas must have the same number of rows")
        for value_row, formula_row in zip(self.values, self.formulas):
            if len(value_row) != len(formula_row):
                raise ValueError("values and formulas must have the same number of columns")

    @property
    def num_rows(self) -> int:
        return len(self.formulas)

    @property
    def num_cols(self) -> int:
        return len(self.formulas[0]) if self.formulas else 0

    @property
    def shape(self) -> tuple[int, int]:
        return self.num_rows, self.num_cols

    @property
    def anchor(self) -> tuple[int, int]:
        return self.start_row, self.start_col

    def cell(self, row: int, col: int) -> Cell:
        return Cell(row, col, self.values[row - 1][col - 1], self.formulas[row - 1][col - 1])

    def cells(self) -> Iterator[Cell]:
        for r in range(1, self.num_rows + 1):
            for c in range(1, self.num_cols + 1):
                yield self.cell(r, c)

    def absolute(self, row: int, col: int) -> tuple[int, int]:
        return self.start_row + row - 1, self.start_col + col - 1

    def pairs_with(self, other: "Grid") -> bool:
        return self.anchor == other.anchor and self.shape == other.shape


@dataclass(frozen=True)
class Classification:
    kinds: list[list[CellKind]]
    any_ai_formula: bool

    def kind_at(self, row: int, col: int) -> CellKind:
        return self.kinds[row - 1][col - 1]


def formula_text(raw: Any) -> str:
    """Formula text for an openpyxl cell value ("" when it is not a formula)."""
    if raw is None:
        return ""
    text = getattr(raw, "text", None)
    if isinstance(text, str):
        return text
    if isinstance(raw, str) and raw.startswith("="):
        return raw
    return ""


def function_name(formula: str) -> str | None:
    text = formula.strip()
    if text.startswith("="):
        text = text[1:]
    if "(" not in text:
        return None
    name = text.split("(", 1)[0].strip().upper()
    if name.startswith(_UDF_PREFIX):
        name = name[len(_UDF_PREFIX):]
    return name or None


def classify_formula(formula: Any, names: Iterable[str]) -> CellKind:
    if not isinstance(formula, str) or not formula.strip():
        return CellKind.STATIC_VALUE
    name = function_name(formula)
    if name is not None and name in {n.upper() for n in names}:
        return CellKind.AI_FORMULA
    return CellKind.FOREIGN_FORMULA


def classify_grid(grid: Grid, names: Iterable[str]) -> Classification:
    registered = frozenset(n.upper() for n in names)
    kinds: list[list[CellKind]] = []
    any_ai = False
    for formula_row in grid.formulas:
        row_kinds = []
        for formula in formula_row:
            kind = classify_formula(formula, registered)
            if kind is CellKind.AI_FORMULA:
                any_ai = True
            row_kinds.append(kind)
        kinds.append(row_kinds)
    return Classification(kinds=kinds, any_ai_formula=any_ai)
