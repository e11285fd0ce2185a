# exports.py: XLSX / PDF report builders shared by admin list views
from io import BytesIO
from typing import Dict, List, Sequence

import pandas as pd
from flask import send_file
from reportlab.lib import colors
from reportlab.lib.pagesizes import landscape, letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Table, TableStyle

EXPORT_FORMATS = {"xlsx", "pdf"}


def fmt_dt(dt):
    try:
        return dt.strftime("%Y-%m-%d %H:%M") if dt else ""
    except Exception:
        return str(dt or "")


def export_xlsx(rows: List[Dict], filename: str, sheet_name: str):
    df = pd.DataFrame(rows)
    output = BytesIO()
    with pd.ExcelWriter(output, engine="xlsxwriter") as writer:
        df.to_excel(writer, index=False, sheet_name=sheet_name[:31])
    output.seek(0)
    return send_file(
        output,
        download_name=filename,
        as_attachment=True,
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )


def export_pdf(title: str, headers: Sequence[str], rows: List[Sequence], filename: str):
    output = BytesIO()
    doc = SimpleDocTemplate(
        output, pagesize=landscape(letter),
        leftMargin=36, rightMargin=36, topMargin=42, bottomMargin=36,
    )
    styles = getSampleStyleSheet()
    elements = [Paragraph(title, styles["Title"])]

    data = [list(headers)] + [["" if v is None else str(v) for v in r] for r in rows]
    table = Table(data, repeatRows=1, hAlign="LEFT")
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.darkblue),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("ALIGN", (0, 0), (-1, -1), "LEFT"),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.black),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.whitesmoke, colors.lightgrey]),
    ]))
    elements.append(table)
    doc.build(elements)
    output.seek(0)
    return send_file(output, download_name=filename, as_attachment=True, mimetype="application/pdf")
