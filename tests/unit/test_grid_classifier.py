from __future__ import annotations

import pytest
from openpyxl.worksheet.formula import ArrayFormula

from gpt4sheets.grid import CellKind, Grid, classify_formula, classify_grid, formula_text, function_name

NAMES = {"AI_CALL", "AI_CALL_ADV"}


def test_empty_formula_is_static() -> None:
    assert classify_formula("", NAMES) is CellKind.STATIC_VALUE
    assert classify_formula(None, NAMES) is CellKind.STATIC_VALUE
    assert classify_formula("   ", NAMES) is CellKind.STATIC_VALUE


@pytest.mark.parametrize(
    "formula",
    [
        '=AI_CALL("x")',
        '=ai_call("x")',
        '  = AI_CALL_ADV ("x", "y")',
        '=_xludf.AI_CALL("x")',
        '=AI_CALL(',
    ],
)
def test_ai_formulas_match_by_name(formula: str) -> None:
    assert classify_formula(formula, NAMES) is CellKind.AI_FORMULA


@pytest.mark.parametrize(
    "formula",
    [
        "=SUM(A1:A2)",
        "=A1+B1",
        "=AI_CALL",
        "=AI_CALLX(1)",
        "=",
    ],
)
def test_other_formulas_are_foreign(formula: str) -> None:
    assert classify_formula(formula, NAMES) is CellKind.FOREIGN_FORMULA


def test_function_name_extraction() -> None:
    assert function_name('=ai_call_adv ( "x" )') == "AI_CALL_ADV"
    assert function_name("=A1+B1") is None
    assert function_name("=(1+2)") is None


def test_registered_names_are_configurable() -> None:
    assert classify_formula("=MY_MODEL(1)", {"my_model"}) is CellKind.AI_FORMULA
    assert classify_formula('=AI_CALL("x")', {"MY_MODEL"}) is CellKind.FOREIGN_FORMULA


def test_formula_text_reads_array_formulas() -> None:
    assert formula_text(ArrayFormula("A1", '=AI_CALL("x")')) == '=AI_CALL("x")'
    assert formula_text("plain") == ""
    assert formula_text(42) == ""


def test_classify_grid_is_total_and_same_shape() -> None:
    grid = Grid(
        start_row=2,
        start_col=3,
        values=[["hello", 3, 42], [None, "x", True]],
        formulas=[['=AI_CALL("x")', "=SUM(A1:A2)", ""], ["", "=broken", '=AI_CALL_ADV("y")']],
    )
    result = classify_grid(grid, NAMES)

    assert result.any_ai_formula is True
    assert result.kinds == [
        [CellKind.AI_FORMULA, CellKind.FOREIGN_FORMULA, CellKind.STATIC_VALUE],
        [CellKind.STATIC_VALUE, CellKind.FOREIGN_FORMULA, CellKind.AI_FORMULA],
    ]
    assert result.kind_at(2, 3) is CellKind.AI_FORMULA


def test_classify_grid_without_ai_formulas() -> None:
    grid = Grid(1, 1, values=[[1, 2]], formulas=[["", "=A1*2"]])
    assert classify_grid(grid, NAMES).any_ai_formula is False


def test_grid_addressing() -> None:
    grid = Grid(5, 2, values=[["a", "b"]], formulas=[["", ""]])
    assert grid.shape == (1, 2)
    assert grid.absolute(1, 2) == (5, 3)
    assert grid.cell(1, 2).value == "b"
    assert [cell.position for cell in grid.cells()] == [(1, 1), (1, 2)]


def test_grid_rejects_mismatched_arrays() -> None:
    with pytest.raises(ValueError):
        Grid(1, 1, values=[[1, 2]], formulas=[[""]])
