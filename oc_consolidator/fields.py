"""
fields.py — canonical columns of the two purchase-order spreadsheets.

Every column the importer understands is a FieldSpec: the canonical name used
in mappings and error messages, the record attribute it fills, the value kind
that drives normalisation, and the ordered header spellings accepted for it.
Header spellings are compared after normalisation (see headers.normalise_header),
so accents and letter case in this table are informational only.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldSpec:
    name: str
    attr: str
    synonyms: tuple[str, ...]
    kind: str = "text"
    required: bool = False


@dataclass(frozen=True)
class Schema:
    name: str
    fields: tuple[FieldSpec, ...]

    @property
    def required_fields(self) -> tuple[FieldSpec, ...]:
        return tuple(field for field in self.fields if field.required)


ORDER_NUMBER_SYNONYMS = ("N OC", "NUMERO OC", "OC", "NÚMERO OC", "N° OC", "No OC", "NO OC")

MAIN_SCHEMA = Schema(
    name="main",
    fields=(
        FieldSpec("orderNumber", "order_number", ORDER_NUMBER_SYNONYMS, required=True),
        FieldSpec("orderName", "order_name", ("NOMBRE OC", "NOMBRE", "DESCRIPCION OC", "DESCRIPCIÓN OC", "NOMBRE DE LA OC")),
        FieldSpec("date", "date", ("FECHA", "DATE", "FECHA OC"), kind="date"),
        FieldSpec("costCenterLabel", "cost_center_label", ("OBRA", "CENTRO DE GESTION", "CENTRO DE GESTIÓN", "PROYECTO")),
        FieldSpec("supplierName", "supplier_name", ("PROVEEDOR", "SUPPLIER", "PROVIDER"), required=True),
        FieldSpec(
            "paymentTerms",
            "payment_terms",
            ("CONDICION DE PAGO", "CONDICIÓN DE PAGO", "TERMINOS DE PAGO", "PAYMENT TERMS", "CONDICIÓN PAGO"),
        ),
        FieldSpec("amount", "amount", ("MONTO", "VALOR", "TOTAL", "AMOUNT"), kind="amount", required=True),
    ),
)

DETAIL_SCHEMA = Schema(
    name="detail",
    fields=(
        FieldSpec("orderNumber", "order_number", ORDER_NUMBER_SYNONYMS, required=True),
        FieldSpec(
            "costCenterCode",
            "cost_center_code",
            ("CODIGO C.C.", "CÓDIGO C.C.", "CC", "CODIGO CC", "CÓDIGO CC", "CÓDIGO DE C.C."),
            required=True,
        ),
        FieldSpec(
            "costAccountName",
            "cost_account_name",
            ("CUENTA DE COSTO", "CUENTA COSTO", "CUENTA CONTABLE", "CUENTA", "CATEGORY"),
        ),
        FieldSpec("description", "description", ("DESCRIPCION", "DESCRIPCIÓN", "DESCRIPTION", "DESC", "DETALLE")),
        FieldSpec("note", "note", ("GLOSA", "GLOSSA", "OBSERVACION", "OBSERVACIÓN", "COMENTARIO", "OBSERVACIONES")),
        FieldSpec(
            "amount",
            "amount",
            ("MONTO", "VALOR", "TOTAL", "AMOUNT", "SUB TOTAL", "SUBTOTAL"),
            kind="amount",
        ),
    ),
)
