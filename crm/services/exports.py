# crm/services/exports.py
import csv
import io
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from crm import config
from crm.models import PROSPECT_STATUSES, Prospect, utcnow
from crm.services.kpi import compute_kpi, top_by_value
from crm.services.scoring import expected_value, score_prospect
from crm.utils.dates import iso, parse_dt

log = logging.getLogger(__name__)

CSV_HEADERS = [
    "id", "created_at", "full_name", "phone", "email", "prospect_type", "city",
    "property_type", "budget", "estimated_price", "fee_rate", "exclusive",
    "motivation", "timeline", "intention", "source", "consent", "status",
    "last_contact", "next_action", "agent_id", "score", "address", "notes",
]

INT_FIELDS = ("budget", "estimated_price")
BOOL_FIELDS = ("exclusive", "consent")
DATE_FIELDS = ("created_at", "last_contact", "next_action")
TRUE_WORDS = ("true", "oui", "1", "yes")
DEFAULT_FEE_RATE = 0.04


class CsvImportError(ValueError):
    pass


# ---------- CSV ----------

def _cell(val: Any) -> str:
    if val is None:
        return ""
    if isinstance(val, bool):
        return "true" if val else "false"
    if isinstance(val, datetime):
        return iso(val)
    return str(val)


def prospects_to_csv(prospects: Iterable[Prospect]) -> str:
    buf = io.StringIO()
    w = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    w.writerow(CSV_HEADERS)
    for p in prospects:
        w.writerow([_cell(getattr(p, h, None)) for h in CSV_HEADERS])
    return buf.getvalue()


def _to_number(raw: str, cast=float, default=0):
    try:
        return cast(float(raw)) if raw not in ("", None) else default
    except (TypeError, ValueError):
        return default


def _to_dt(raw: str) -> Optional[datetime]:
    try:
        return parse_dt(raw)
    except (ValueError, OverflowError):
        return None


def parse_prospects_csv(text: str) -> List[Dict[str, Any]]:
    """
    Rows of an exported (or hand-made) prospects CSV as field dicts ready for
    Prospect(**row). Unknown columns are ignored; ids are not carried over.
    """
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    headers = [h.strip() for h in (reader.fieldnames or []) if h]
    if "full_name" not in headers:
        raise CsvImportError("CSV header must include at least 'full_name'")
    reader.fieldnames = [h.strip() if h else h for h in reader.fieldnames]

    rows: List[Dict[str, Any]] = []
    for raw in reader:
        if not any((v or "").strip() for v in raw.values() if isinstance(v, str)):
            continue
        vals = {h: (raw.get(h) or "").strip() for h in CSV_HEADERS if h in raw}
        out: Dict[str, Any] = {}
        for h, v in vals.items():
            if h in ("id", "score"):
                continue
            if h in INT_FIELDS:
                out[h] = _to_number(v, int, 0)
            elif h == "fee_rate":
                out[h] = _to_number(v, float, 0) or DEFAULT_FEE_RATE
            elif h in BOOL_FIELDS:
                out[h] = v.lower() in TRUE_WORDS
            elif h in DATE_FIELDS:
                dt = _to_dt(v)
                if dt is not None or h != "created_at":
                    out[h] = dt
            elif h == "agent_id":
                out[h] = _to_number(v, int, None)
            else:
                out[h] = v or None

        out.setdefault("fee_rate", DEFAULT_FEE_RATE)
        if out.get("status") not in PROSPECT_STATUSES:
            out["status"] = "Nouveau"
        out["score"] = score_prospect(out)
        rows.append(out)
    return rows


# ---------- PDF ----------

def _eur(value: float) -> str:
    return f"{value:,.0f} €".replace(",", " ")


def prospects_report_pdf(prospects: Sequence[Prospect], now: Optional[datetime] = None) -> bytes:
    now = now or utcnow()
    kpi = compute_kpi(prospects, now=now)

    buffer = io.BytesIO()
    p = canvas.Canvas(buffer, pagesize=A4)
    _, height = A4
    y = height - 60

    p.setFont("Helvetica-Bold", 18)
    p.drawString(40, y, f"Rapport CRM - {config.AGENCY_NAME}")
    y -= 18
    p.setFont("Helvetica", 9)
    p.drawString(40, y, f"Généré le {now.strftime('%d/%m/%Y %H:%M')} UTC")

    y -= 30
    p.setFont("Helvetica", 12)
    for line in (
        f"SLA moyen : {kpi['sla_avg_minutes']} min",
        f"Valeur pipeline : {_eur(kpi['pipeline_value'])}",
        f"Exclusivités : {kpi['exclusives']}",
        f"RDV (7 jours) : {kpi['rdv_7d']}",
    ):
        p.drawString(40, y, line)
        y -= 18

    y -= 14
    p.setFont("Helvetica-Bold", 12)
    p.drawString(40, y, "Top 10 prospects par valeur :")
    y -= 18
    p.setFont("Helvetica", 11)
    for i, pr in enumerate(top_by_value(prospects, 10), start=1):
        p.drawString(40, y, f"{i}. {pr.full_name or 'Sans nom'} - {_eur(expected_value(pr))}")
        y -= 16

    p.showPage()
    p.save()
    log.info("Built PDF report for %s prospects", len(prospects))
    return buffer.getvalue()
