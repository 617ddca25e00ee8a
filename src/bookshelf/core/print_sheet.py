"""Printable sheet of a distributor and the merchants assigned to them."""

from __future__ import annotations

import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from html import escape

import structlog

log = structlog.get_logger()

MERCHANT_TABLE = os.environ.get("MERCHANT_TABLE", "T2024_commercants")

NOT_PROVIDED = "Not provided"

TableFetcher = Callable[[str], Awaitable[dict]]


@dataclass
class MerchantRow:
    name: str
    address: str
    piggy_banks: str
    count: int = 0


@dataclass
class PrintSheet:
    printed_at: datetime
    distributor_lines: list[str] = field(default_factory=list)
    merchants: list[MerchantRow] = field(default_factory=list)

    @property
    def merchant_count(self) -> int:
        return len(self.merchants)

    @property
    def total_piggy_banks(self) -> int:
        return sum(row.count for row in self.merchants)


def convert_table(columnar: dict | None) -> list[dict]:
    """Turn a column-oriented table ({"id": [...], "NOM": [...]}) into rows."""
    if not isinstance(columnar, dict) or not isinstance(columnar.get("id"), list):
        return []
    rows = []
    for index in range(len(columnar["id"])):
        row = {}
        for key, values in columnar.items():
            if isinstance(values, list) and len(values) > index:
                row[key] = values[index]
        if row.get("id") is not None:
            rows.append(row)
    return rows


def linked_merchants(distributor: dict | None, merchants: list[dict]) -> list[dict]:
    """Merchants whose Distributeur reference list holds the distributor id."""
    if not distributor or not distributor.get("id"):
        return []
    distributor_id = distributor["id"]
    return [
        m
        for m in merchants
        if isinstance(m.get("Distributeur"), list) and distributor_id in m["Distributeur"]
    ]


def _text(*parts: object) -> str:
    return " ".join(str(p) for p in parts if p not in (None, "")).strip()


def _piggy_banks(value: object) -> int:
    try:
        return int(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0


def _distributor_lines(d: dict) -> list[str]:
    street = _text(d.get("Rue"), d.get("Numero"))
    town = _text(d.get("Code_Postal"), d.get("Localite"))
    phone = d.get("Tel_fixe") or d.get("Tel_portable") or NOT_PROVIDED
    email = d.get("Adresse_electronique") or NOT_PROVIDED
    return [
        _text(d.get("Forme_politesse"), d.get("NOM"), d.get("Prenom")),
        f"{street}, {town}",
        f"Tel: {phone} | Email: {email}",
    ]


def _merchant_row(m: dict) -> MerchantRow:
    street = _text(m.get("Rue"), m.get("Numero"))
    town = _text(m.get("Code_Postal"), m.get("Commune"))
    return MerchantRow(
        name=str(m.get("NOM") or ""),
        address=f"{street}, {town}",
        piggy_banks=str(m.get("Tirelires") or "0"),
        count=_piggy_banks(m.get("Tirelires")),
    )


async def build_sheet(
    distributor: dict | None,
    fetch_table: TableFetcher,
    printed_at: datetime | None = None,
    merchant_table: str = MERCHANT_TABLE,
) -> PrintSheet:
    """Collect everything printed for one distributor.

    A failing table fetch prints the distributor with no merchants.
    """
    sheet = PrintSheet(printed_at=printed_at or datetime.now())
    if not distributor:
        return sheet

    sheet.distributor_lines = _distributor_lines(distributor)
    if not distributor.get("id"):
        return sheet

    try:
        merchants = convert_table(await fetch_table(merchant_table))
    except Exception as e:
        log.error("merchant_fetch_failed", table=merchant_table, error=str(e))
        merchants = []

    sheet.merchants = [_merchant_row(m) for m in linked_merchants(distributor, merchants)]
    log.debug("sheet_built", distributor=distributor.get("id"), merchants=sheet.merchant_count)
    return sheet


def render_html(sheet: PrintSheet) -> str:
    """Render the sheet as a standalone printable HTML page."""
    printed = sheet.printed_at.strftime("%d.%m.%Y %H:%M")

    if sheet.distributor_lines:
        name, address, contact = (escape(line) for line in sheet.distributor_lines)
        distributor = f"<p><strong>{name}</strong></p>\n<p>{address}</p>\n<p>{contact}</p>"
    else:
        distributor = "No distributor selected"

    if sheet.merchants:
        summary = (
            f"Number of merchants: {sheet.merchant_count} | "
            f"Total piggy banks: {sheet.total_piggy_banks}"
        )
        rows = "\n".join(
            '<tr class="commerce-row">'
            f"<td>{escape(row.name)}</td>"
            f"<td>{escape(row.address)}</td>"
            f"<td>{escape(row.piggy_banks)}</td>"
            '<td><div class="check-box"></div></td>'
            "</tr>"
            for row in sheet.merchants
        )
    else:
        summary = "No merchant assigned"
        rows = ""

    return f"""<!DOCTYPE html>
<html lang="fr">
<head>
<meta charset="utf-8">
<title>Distributor sheet</title>
<style>
  body {{ font-family: sans-serif; font-size: 12px; }}
  table {{ width: 100%; border-collapse: collapse; }}
  td, th {{ border: 1px solid #999; padding: 4px; }}
  .check-box {{ width: 14px; height: 14px; border: 1px solid #000; margin: auto; }}
  @media print {{ #print-button {{ display: none; }} }}
</style>
</head>
<body>
<p id="current-date">Printed: {printed}</p>
<div id="distributor-info">{distributor}</div>
<p id="commerces-summary">{summary}</p>
<table id="commerces-table">
<thead><tr><th>Merchant</th><th>Address</th><th>Piggy banks</th><th>Done</th></tr></thead>
<tbody>
{rows}
</tbody>
</table>
<button id="print-button" onclick="window.print()">Print</button>
</body>
</html>
"""
