from __future__ import annotations

import argparse
import json
import time
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from gpt4sheets.backup import (
    ActionOutcome,
    BackupSheetTargetError,
    all_values_to_formulas,
    formulas_to_values,
    values_to_formulas,
)
from gpt4sheets.evaluate import evaluate_region, format_cell_value
from gpt4sheets.functions import ai_call_adv
from gpt4sheets.progress import format_seconds, spinner
from gpt4sheets.property_store import PropertyStore
from gpt4sheets.providers import Provider
from gpt4sheets.settings import (
    get_all_models_grouped,
    get_api_key_status,
    get_user_settings,
    remove_provider_api_key,
    set_default_model,
    set_default_temperature,
    set_include_search_results,
    set_provider_api_key,
    verify_api_key,
)
from gpt4sheets.workbook import SheetNotFoundError, WorkbookDocument


def _add_workbook_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("workbook", help="Path to the .xlsx workbook")
    parser.add_argument(
        "--sheet",
        default=None,
        help="Sheet to operate on (default: the workbook's active sheet)",
    )
    parser.add_argument(
        "--range",
        dest="cell_range",
        default=None,
        help="A1 range such as B2:D10 (default: the whole occupied range)",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Write the result to this path instead of overwriting the workbook",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gpt4sheets")
    parser.add_argument(
        "--settings",
        default=None,
        help="Path to the settings file (default: GPT4SHEETS_SETTINGS_PATH env or ~/.gpt4sheets/settings.json)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    freeze_parser = subparsers.add_parser(
        "freeze", help="Replace AI formulas by their values and back the formulas up"
    )
    _add_workbook_arguments(freeze_parser)

    restore_parser = subparsers.add_parser(
        "restore", help="Put backed up AI formulas back (whole sheet also drops the backup sheet)"
    )
    _add_workbook_arguments(restore_parser)

    run_parser = subparsers.add_parser(
        "run", help="Compute AI formulas with the configured models, then freeze the results"
    )
    _add_workbook_arguments(run_parser)

    call_parser = subparsers.add_parser("call", help="Send one prompt, like =AI_CALL_ADV(...)")
    call_parser.add_argument("prompt")
    call_parser.add_argument("--input", dest="input_text", default="")
    call_parser.add_argument("--system", dest="system_prompt", default=None)
    call_parser.add_argument("--model", default="")
    call_parser.add_argument("--temperature", type=float, default=0.0)
    call_parser.add_argument("--output-type", default="text", choices=["text", "list", "matrix"])

    keys_parser = subparsers.add_parser("keys", help="Manage provider API keys")
    keys_sub = keys_parser.add_subparsers(dest="keys_command", required=True)
    providers = [provider.value for provider in Provider]
    set_key = keys_sub.add_parser("set", help="Store an API key")
    set_key.add_argument("provider", choices=providers)
    set_key.add_argument("api_key")
    remove_key = keys_sub.add_parser("remove", help="Remove an API key")
    remove_key.add_argument("provider", choices=providers)
    keys_sub.add_parser("status", help="Show which providers have a key")
    test_key = keys_sub.add_parser("test", help="Store an API key after a test call succeeds")
    test_key.add_argument("provider", choices=providers)
    test_key.add_argument("api_key")

    settings_parser = subparsers.add_parser("settings", help="Show or change defaults")
    settings_sub = settings_parser.add_subparsers(dest="settings_command", required=True)
    settings_sub.add_parser("show", help="Print current settings")
    model_parser = settings_sub.add_parser("model", help="Set the default model")
    model_parser.add_argument("model")
    temperature_parser = settings_sub.add_parser("temperature", help="Set the default temperature (0-1)")
    temperature_parser.add_argument("temperature")
    search_parser = settings_sub.add_parser(
        "search-results", help="Append Perplexity search results to text answers"
    )
    search_parser.add_argument("state", choices=["on", "off"])

    subparsers.add_parser("models", help="List available models")
    return parser


def _load_document(path: str) -> WorkbookDocument:
    try:
        return WorkbookDocument.load(path)
    except FileNotFoundError as err:
        raise SystemExit(f"ERROR: {err}")


def _resolve_sheet(document: WorkbookDocument, sheet: str | None) -> str:
    sheet_name = sheet or document.active_sheet_name
    if not document.has_sheet(sheet_name):
        raise SystemExit(f"ERROR: sheet not found: {sheet_name}")
    return sheet_name


def _finish_workbook_action(document: WorkbookDocument, outcome: ActionOutcome, output: str | None) -> int:
    if not outcome.ok:
        return 1
    result = outcome.result
    if result is not None and (result.changed or result.backup_deleted):
        saved = document.save(output)
        print(f"Saved: {saved}")
    return 0


def _run_freeze(args: argparse.Namespace) -> int:
    document = _load_document(args.workbook)
    sheet_name = _resolve_sheet(document, args.sheet)
    outcome = formulas_to_values(document, sheet_name, args.cell_range)
    return _finish_workbook_action(document, outcome, args.output)


def _run_restore(args: argparse.Namespace) -> int:
    document = _load_document(args.workbook)
    sheet_name = _resolve_sheet(document, args.sheet)
    if args.cell_range:
        outcome = values_to_formulas(document, sheet_name, args.cell_range)
    else:
        outcome = all_values_to_formulas(document, sheet_name)
    return _finish_workbook_action(document, outcome, args.output)


def _run_evaluate(args: argparse.Namespace, store: PropertyStore) -> int:
    t0 = time.perf_counter()
    document = _load_document(args.workbook)
    sheet_name = _resolve_sheet(document, args.sheet)

    print(f"[1/3] Computing AI formulas ({sheet_name})", flush=True)
    try:
        report = evaluate_region(document, sheet_name, args.cell_range, store=store)
    except (BackupSheetTargetError, SheetNotFoundError, ValueError) as err:
        raise SystemExit(f"ERROR: {err}")
    print(f"Evaluated {len(report.evaluated)} cell(s), {len(report.failed)} failed in {report.region}")

    print("[2/3] Freezing results", flush=True)
    outcome = formulas_to_values(document, sheet_name, args.cell_range)

    print("[3/3] Saving workbook", flush=True)
    code = _finish_workbook_action(document, outcome, args.output)
    print(f"Done in {format_seconds(time.perf_counter() - t0)}", flush=True)
    return code if not report.failed else 1


def _run_call(args: argparse.Namespace, store: PropertyStore) -> int:
    with spinner("Calling model..."):
        value = ai_call_adv(
            args.prompt,
            args.system_prompt,
            args.input_text,
            args.temperature,
            args.model,
            args.output_type,
            store=store,
        )
    if isinstance(value, list):
        print(json.dumps(value, indent=2, ensure_ascii=False))
        return 0
    print(format_cell_value(value))
    return 1 if isinstance(value, str) and value.startswith("Error") else 0


def _run_keys(args: argparse.Namespace, store: PropertyStore) -> int:
    if args.keys_command == "status":
        for provider, status in get_api_key_status(store).items():
            state = "configured" if status["configured"] else "missing"
            print(f"{provider:<12} {state:<11} {status['key_preview']}")
        return 0
    if args.keys_command == "set":
        result = set_provider_api_key(store, args.provider, args.api_key)
    elif args.keys_command == "remove":
        result = remove_provider_api_key(store, args.provider)
    else:
        with spinner(f"Testing {args.provider} API key..."):
            result = verify_api_key(store, args.provider, args.api_key)
    print(result.message)
    return 0 if result.success else 1


def _run_settings(args: argparse.Namespace, store: PropertyStore) -> int:
    if args.settings_command == "show":
        settings = get_user_settings(store)
        payload = settings.model_dump()
        payload["api_keys"] = {
            provider: status["key_preview"]
            for provider, status in get_api_key_status(store).items()
            if status["configured"]
        }
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return 0
    if args.settings_command == "model":
        result = set_default_model(store, args.model)
    elif args.settings_command == "temperature":
        result = set_default_temperature(store, args.temperature)
    else:
        result = set_include_search_results(store, args.state == "on")
    print(result.message)
    return 0 if result.success else 1


def _run_models() -> int:
    grouped = get_all_models_grouped()
    print("Quick select: " + ", ".join(grouped["quick_select"]))
    for group in grouped["all"]:
        print(f"{group['provider']}: {', '.join(group['models'])}")
    return 0


def main(argv: list[str] | None = None) -> int:
    env_path = find_dotenv(usecwd=True)
    load_dotenv(env_path, override=False)

    parser = build_parser()
    args = parser.parse_args(argv)
    store = PropertyStore(Path(args.settings) if args.settings else None)

    if args.command == "freeze":
        return _run_freeze(args)
    if args.command == "restore":
        return _run_restore(args)
    if args.command == "run":
        return _run_evaluate(args, store)
    if args.command == "call":
        return _run_call(args, store)
    if args.command == "keys":
        return _run_keys(args, store)
    if args.command == "settings":
        return _run_settings(args, store)
    if args.command == "models":
        return _run_models()

    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
