from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from oc_consolidator import __version__ as TOOL_VERSION
from oc_consolidator.config import Settings, load_settings, starter_config
from oc_consolidator.consolidation import build_preview
from oc_consolidator.errors import ConfigError, ImportCancelledError, RecordValidationError
from oc_consolidator.payload import build_items, build_payload
from oc_consolidator.pipeline import LoadedOrders, load_orders, run_import
from oc_consolidator.report import build_import_summary
from oc_consolidator.upsert import HttpOrderStore, validate_record

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_PARTIAL = 3
EXIT_IMPORT_FAILED = 4
EXIT_CANCELLED = 130


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class ConsolidatorArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, payload: str) -> None:
    ensure_parent(path)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def safe_output_path(path: Path) -> Path:
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def configure_logging(args: argparse.Namespace) -> None:
    if getattr(args, "verbose", False):
        level = logging.INFO
    elif getattr(args, "quiet", False):
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr, force=True)


def classify_backend_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, ImportCancelledError):
        return EXIT_CANCELLED
    if isinstance(exc, (ConfigError, FileNotFoundError)):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, (ImportError, ValueError)):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def read_input(raw_path: str) -> tuple[Path, bytes]:
    path = Path(raw_path)
    if not path.exists():
        raise CliError(f"File not found: {path}", EXIT_COMMAND_ERROR)
    return path, path.read_bytes()


def resolve_settings(args: argparse.Namespace) -> Settings:
    return load_settings(
        Path(args.config) if getattr(args, "config", None) else None,
        overrides={
            "api_url": getattr(args, "api_url", None),
            "api_token": getattr(args, "token", None),
            "timeout_seconds": getattr(args, "timeout", None),
        },
    )


def load_inputs(args: argparse.Namespace, settings: Settings) -> tuple[Path, Path, LoadedOrders]:
    main_path, main_bytes = read_input(args.main)
    detail_path, detail_bytes = read_input(args.detail)
    loaded = load_orders(
        main_bytes,
        detail_bytes,
        main_name=main_path.name,
        detail_name=detail_path.name,
        scan_limit=settings.header_scan_rows,
    )
    return main_path, detail_path, loaded


def render_preview_text(preview: dict[str, Any], main_path: Path, detail_path: Path) -> str:
    counts = preview["counts"]
    lines = [
        "oc-consolidator preview",
        f"Main file: {main_path} (header row {preview['header_rows']['main']})",
        f"Detail file: {detail_path} (header row {preview['header_rows']['detail']})",
        f"Main records: {counts['main_records']} (rows rejected: {counts['main_rows_rejected']})",
        f"Detail records: {counts['detail_records']} (rows rejected: {counts['detail_rows_rejected']})",
        f"Consolidated orders: {counts['consolidated_records']}",
        f"With details: {counts['with_details']}",
        f"New from details (needs review): {counts['new_from_details']}",
    ]
    samples = preview["samples"]["consolidated"]
    if samples:
        lines.append("Sample orders:")
        lines.extend(
            f"- {item['order_number']}: {item['supplier_name']} {item['amount']:g} "
            f"[{item['cost_center_code'] or '-'}] {item['details_count']} details"
            for item in samples
        )
    if preview["warnings"]:
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in preview["warnings"])
    return "\n".join(lines) + "\n"


def render_dry_run_text(payloads: list[dict[str, Any]], invalid: list[tuple[str, str]]) -> str:
    lines = [
        "oc-consolidator import (dry run)",
        f"Orders ready to send: {len(payloads)}",
        f"Orders that would fail validation: {len(invalid)}",
    ]
    lines.extend(f"- {order_number or 'N/A'}: {reason}" for order_number, reason in invalid)
    return "\n".join(lines) + "\n"


def build_parser() -> argparse.ArgumentParser:
    parser = ConsolidatorArgumentParser(
        prog="oc-consolidator",
        description="Consolidate main and detail purchase-order spreadsheets and upsert them.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    preview = subparsers.add_parser("preview", help="Consolidate both files and show what would be imported.")
    preview.add_argument("main", help="Main order spreadsheet")
    preview.add_argument("detail", help="Detail spreadsheet")
    preview.add_argument("--config", help="JSON config file")
    preview.add_argument("--output", help="Write the preview JSON to this path")
    preview.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    preview.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    preview.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    imp = subparsers.add_parser("import", help="Consolidate both files and upsert the orders.")
    imp.add_argument("main", help="Main order spreadsheet")
    imp.add_argument("detail", help="Detail spreadsheet")
    imp.add_argument("--config", help="JSON config file")
    imp.add_argument("--api-url", dest="api_url", help="Order store base URL")
    imp.add_argument("--token", help="Bearer token for the order store")
    imp.add_argument("--timeout", type=float, help="Request timeout in seconds")
    imp.add_argument("--dry-run", action="store_true", help="Build payloads without contacting the order store")
    imp.add_argument("--report", help="Write the text report to this path")
    imp.add_argument("--summary", help="Write the JSON summary to this path")
    imp.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    imp.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    imp.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter config file.")
    config_init.add_argument("--path", default="oc-consolidator.json", help="Config output path")

    subparsers.add_parser("version", help="Print version")
    return parser


def run_preview(args: argparse.Namespace) -> int:
    try:
        settings = resolve_settings(args)
        main_path, detail_path, loaded = load_inputs(args, settings)
        preview = build_preview(
            loaded.main,
            loaded.detail,
            loaded.consolidated,
            main_samples=settings.preview_main_samples,
            detail_samples=settings.preview_detail_samples,
            consolidated_samples=settings.preview_consolidated_samples,
        )
        if args.output:
            output_path = safe_output_path(Path(args.output))
            write_json(output_path, preview)
            emit_human(f"Preview written: {output_path}", quiet=args.quiet or args.json)
        if args.json:
            print(json_dumps(preview))
        else:
            emit_human(render_preview_text(preview, main_path, detail_path).rstrip(), quiet=args.quiet)
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_dry_run(args: argparse.Namespace, loaded: LoadedOrders) -> int:
    payloads: list[dict[str, Any]] = []
    items: dict[str, list[dict[str, Any]]] = {}
    invalid: list[tuple[str, str]] = []
    for record in loaded.consolidated:
        try:
            validate_record(record)
        except RecordValidationError as exc:
            invalid.append((record.order_number, str(exc)))
            continue
        payloads.append(build_payload(record))
        items[record.order_number] = [item for item in build_items(record) if item["total"] > 0]
    if args.json:
        print(json_dumps({"dry_run": True, "ordenes": payloads, "items": items, "invalid": [list(item) for item in invalid]}))
    else:
        emit_human(render_dry_run_text(payloads, invalid).rstrip(), quiet=args.quiet)
    return EXIT_SUCCESS


def exit_code_for_outcome(total: int, failed: int) -> int:
    if failed == 0:
        return EXIT_SUCCESS
    if failed == total:
        return EXIT_IMPORT_FAILED
    return EXIT_PARTIAL


def run_import_command(args: argparse.Namespace) -> int:
    try:
        settings = resolve_settings(args)
        report_path = safe_output_path(Path(args.report)) if args.report else None
        summary_path = safe_output_path(Path(args.summary)) if args.summary else None
        main_path, detail_path = Path(args.main), Path(args.detail)

        if args.dry_run:
            _, _, loaded = load_inputs(args, settings)
            return run_dry_run(args, loaded)

        _, main_bytes = read_input(args.main)
        _, detail_bytes = read_input(args.detail)
        store = HttpOrderStore(settings.api_url, token=settings.api_token, timeout=settings.timeout_seconds)
        emit_human(f"Sending orders to {settings.api_url}", quiet=args.quiet or args.json)
        cancel_event = threading.Event()
        with ThreadPoolExecutor(max_workers=1) as executor:
            future = executor.submit(
                run_import,
                main_bytes,
                detail_bytes,
                store,
                main_name=main_path.name,
                detail_name=detail_path.name,
                scan_limit=settings.header_scan_rows,
                cancel_event=cancel_event,
            )
            try:
                result = future.result()
            except KeyboardInterrupt:
                # the worker stops at its next checkpoint; leaving the block waits for it
                cancel_event.set()
                eprint("Cancelling import...")
                raise ImportCancelledError("Import cancelled by user") from None
        preview = build_preview(
            result.loaded.main,
            result.loaded.detail,
            result.loaded.consolidated,
            main_samples=settings.preview_main_samples,
            detail_samples=settings.preview_detail_samples,
            consolidated_samples=settings.preview_consolidated_samples,
        )
        summary = build_import_summary(
            result.outcome,
            main_file=str(main_path),
            detail_file=str(detail_path),
            preview_counts=preview["counts"],
            warnings=preview["warnings"],
        )
        if report_path:
            write_text(report_path, result.report)
            emit_human(f"Report written: {report_path}", quiet=args.quiet or args.json)
        if summary_path:
            write_json(summary_path, summary)
            emit_human(f"Summary written: {summary_path}", quiet=args.quiet or args.json)
        if args.json:
            print(json_dumps(summary))
        else:
            emit_human(result.report.rstrip(), quiet=args.quiet)
        return exit_code_for_outcome(result.outcome.total, result.outcome.failed)
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    write_json(config_path, starter_config())
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        configure_logging(args)
        if args.command == "preview":
            return run_preview(args)
        if args.command == "import":
            return run_import_command(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code
    except KeyboardInterrupt:
        eprint("Cancelled")
        return EXIT_CANCELLED


if __name__ == "__main__":
    raise SystemExit(main())
