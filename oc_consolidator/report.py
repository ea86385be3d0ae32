from __future__ import annotations

from typing import Any

from oc_consolidator import __version__ as TOOL_VERSION
from oc_consolidator.contracts import build_contract, build_run_summary
from oc_consolidator.models import BatchOutcome

REPORT_TITLE = "REPORTE DE PROCESAMIENTO DE ÓRDENES DE COMPRA"
RULE = "=" * 50


def success_rate(created: int, updated: int, total: int) -> float:
    if total == 0:
        return 0.0
    return (created + updated) / total * 100


def compute_stats(outcome: BatchOutcome) -> dict[str, Any]:
    return {
        "total": outcome.total,
        "created": outcome.created,
        "updated": outcome.updated,
        "errors": outcome.failed,
        "success_rate": success_rate(outcome.created, outcome.updated, outcome.total),
    }


def build_report(outcome: BatchOutcome) -> str:
    stats = compute_stats(outcome)
    lines = [
        REPORT_TITLE,
        RULE,
        "",
        "ESTADÍSTICAS GENERALES:",
        f"   • Total de registros procesados: {stats['total']}",
        f"   • Órdenes creadas: {stats['created']}",
        f"   • Órdenes actualizadas: {stats['updated']}",
        f"   • Errores encontrados: {stats['errors']}",
        f"   • Tasa de éxito: {stats['success_rate']:.1f}%",
        f"   • Ítems de detalle creados: {outcome.items_created}",
        "",
    ]
    if stats["created"]:
        lines.append(f"NUEVAS CREACIONES ({stats['created']}):")
        lines.append(f"   Se crearon {stats['created']} órdenes de compra nuevas en el sistema.")
        lines.append("")
    if stats["updated"]:
        lines.append(f"ACTUALIZACIONES ({stats['updated']}):")
        lines.append(f"   Se actualizaron {stats['updated']} órdenes existentes con nueva información.")
        lines.append("")
    failures = outcome.failures
    if failures:
        lines.append(f"ERRORES ENCONTRADOS ({len(failures)}):")
        for position, failure in enumerate(failures, start=1):
            lines.append(f"   {position}. {failure.order_number or 'N/A'}: {failure.error_message}")
        lines.append("")
    if outcome.item_errors:
        lines.append(f"ERRORES EN ÍTEMS DE DETALLE ({len(outcome.item_errors)}):")
        lines.extend(f"   - {message}" for message in outcome.item_errors)
        lines.append("")
    if outcome.used_fallback:
        lines.append("El envío por lote falló; las órdenes se enviaron una por una.")
        lines.append("")
    lines.extend(
        [
            "PROCESO DE CONSOLIDACIÓN:",
            "   • Se combinaron datos de archivos principal y de detalles",
            '   • Se utilizó el campo "N° OC" como clave de consolidación',
        ]
    )
    return "\n".join(lines) + "\n"


def build_import_summary(
    outcome: BatchOutcome,
    *,
    main_file: str | None,
    detail_file: str | None,
    preview_counts: dict[str, int] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    contract = build_contract("oc_consolidator.import_summary")
    stats = compute_stats(outcome)
    status = "ok" if stats["errors"] == 0 else ("failed" if stats["errors"] == stats["total"] else "partial")
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        "stats": {**stats, "success_rate": round(stats["success_rate"], 1)},
        "used_fallback": outcome.used_fallback,
        "items_created": outcome.items_created,
        "item_errors": list(outcome.item_errors),
        "outcomes": [
            {
                "index": item.record_ref,
                "order_number": item.order_number,
                "result": item.result_kind,
                "entity_id": item.entity_id,
                "error": item.error_message,
            }
            for item in outcome.outcomes
        ],
        "run_summary": build_run_summary(
            command="import",
            main_file=main_file,
            detail_file=detail_file,
            status=status,
            metrics={**(preview_counts or {}), **stats},
            warnings=warnings,
        ),
    }
