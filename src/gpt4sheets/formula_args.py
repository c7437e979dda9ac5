from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from openpyxl.formula.tokenizer import Token, Tokenizer, TokenizerError

from gpt4sheets.workbook import WorkbookDocument, parse_range

QUALIFIED_REF_SPLIT = re.compile(r"^(?P<sheet>.+)!(?P<addr>.+)$")


class UnsupportedArgumentError(ValueError):
    pass


@dataclass(frozen=True)
class Argument:
    kind: str  # "empty" | "text" | "number" | "logical" | "error" | "reference"
    value: Any


@dataclass(frozen=True)
class ParsedCall:
    name: str
    args: list[Argument]


def _unquote_text(raw: str) -> str:
    return raw[1:-1].replace('""', '"')


def _number(raw: str) -> int | float:
    return int(raw) if raw.isdigit() else float(raw)


def _argument(tokens: list[Token]) -> Argument:
    if not tokens:
        return Argument("empty", None)
    sign = 1
    if len(tokens) == 2 and tokens[0].type == Token.OP_PRE and tokens[0].value in "+-":
        sign = -1 if tokens[0].value == "-" else 1
        tokens = tokens[1:]
        if tokens[0].subtype != Token.NUMBER:
            raise UnsupportedArgumentError(f"unsupported argument: {tokens[0].value}")
    if len(tokens) != 1 or tokens[0].type != Token.OPERAND:
        text = "".join(token.value for token in tokens)
        raise UnsupportedArgumentError(f"unsupported argument: {text}")

    token = tokens[0]
    if token.subtype == Token.TEXT:
        return Argument("text", _unquote_text(token.value))
    if token.subtype == Token.NUMBER:
        return Argument("number", sign * _number(token.value))
    if token.subtype == Token.LOGICAL:
        return Argument("logical", token.value.upper() == "TRUE")
    if token.subtype == Token.ERROR:
        return Argument("error", token.value)
    return Argument("reference", token.value)


def parse_ai_call(formula: str) -> ParsedCall:
    """Split ``=NAME(arg, ...)`` into its name and literal/reference arguments.

    Nested expressions are not evaluated and raise UnsupportedArgumentError.
    """
    try:
        tokens = [t for t in Tokenizer(formula).items if t.type != Token.WSPACE]
    except TokenizerError as err:
        raise UnsupportedArgumentError(f"cannot parse formula: {err}") from err
    if (
        len(tokens) < 2
        or tokens[0].type != Token.FUNC
        or tokens[0].subtype != Token.OPEN
        or tokens[-1].type != Token.FUNC
        or tokens[-1].subtype != Token.CLOSE
    ):
        raise UnsupportedArgumentError(f"not a single function call: {formula}")

    name = tokens[0].value[:-1].strip().upper()
    if name.startswith("_XLUDF."):
        name = name[len("_XLUDF."):]

    body = tokens[1:-1]
    if not body:
        return ParsedCall(name, [])

    groups: list[list[Token]] = [[]]
    depth = 0
    for token in body:
        if token.type == Token.SEP and token.subtype == Token.ARG and depth == 0:
            groups.append([])
            continue
        if token.type == Token.FUNC:
            depth += 1 if token.subtype == Token.OPEN else -1
            if depth < 0:
                raise UnsupportedArgumentError(f"not a single function call: {formula}")
        groups[-1].append(token)
    return ParsedCall(name, [_argument(group) for group in groups])


def _sheet_and_address(reference: str, default_sheet: str) -> tuple[str, str]:
    match = QUALIFIED_REF_SPLIT.match(reference)
    if not match:
        return default_sheet, reference
    sheet = match.group("sheet")
    if sheet.startswith("'") and sheet.endswith("'"):
        sheet = sheet[1:-1].replace("''", "'")
    return sheet, match.group("addr")


def as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def resolve_argument(arg: Argument, document: WorkbookDocument, sheet_name: str) -> Any:
    """Value of an argument as seen by the spreadsheet function.

    A single-cell reference gives the cell's value; a multi-cell range gives
    its values as text, one line per row with cells separated by ", ".
    """
    if arg.kind != "reference":
        return arg.value
    ref_sheet, address = _sheet_and_address(arg.value, sheet_name)
    start_row, start_col, num_rows, num_cols = parse_range(address)
    grid = document.read_grid(ref_sheet, start_row, start_col, num_rows, num_cols)
    if grid.shape == (1, 1):
        return grid.values[0][0]
    return "\n".join(", ".join(as_text(value) for value in row) for row in grid.values)
