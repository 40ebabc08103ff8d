"""
CME Tracker - Report Exporters
CSV (UTF-8 with BOM, opens cleanly in Excel) and a minimal standalone HTML document.
"""
import csv
import io
from datetime import date
from html import escape
from typing import List, Optional

from ...models.reporting import (
    ReportKind, MaterializedReport, ReportGroup, SummaryRow, GroupDimension,
    COMPLIANCE_STATUS_LABELS, UNASSIGNED_LABEL,
)
from .aggregator import group_by, order_groups

CSV_BOM = "\ufeff"
GROUP_TOTAL_LABEL = "Tổng cộng"
GROUP_HEADER_LABELS = {
    ReportKind.DEPARTMENT: "Khoa/Phòng",
    ReportKind.TITLE: "Chức danh",
}
EMPTY_REPORT_MESSAGE = "Không có dữ liệu trong báo cáo."


def format_number(value) -> str:
    """Credits as printed: integers without decimals, otherwise at most two decimals."""
    if value is None or value == "":
        return ""
    number = round(float(value), 2)
    if number.is_integer():
        return str(int(number))
    return str(number)


def format_cell(key: str, value) -> str:
    if key == "status":
        return COMPLIANCE_STATUS_LABELS.get(value, str(value))
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, float)):
        return format_number(value)
    if value is None:
        return ""
    return str(value)


def export_filename(kind: ReportKind, today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"BaoCao_{ReportKind(kind).value}_{today.isoformat()}.csv"


def report_groups(report: MaterializedReport) -> List[ReportGroup]:
    """
    Groups of a grouped report. Reports rebuilt from a snapshot carry no
    groups, so they are re-derived from the rows' category references.
    """
    if report.groups:
        return report.groups
    dimension = GroupDimension.DEPARTMENT if report.kind == ReportKind.DEPARTMENT else GroupDimension.TITLE
    rows = [r for r in report.rows if isinstance(r, SummaryRow)]
    if dimension == GroupDimension.DEPARTMENT:
        names = {r.department_id: r.department for r in rows if r.department_id}
    else:
        names = {r.title_id: r.title for r in rows if r.title_id}
    # Ids missing from the lookup were stored as the unassigned label
    names = {k: v for k, v in names.items() if v != UNASSIGNED_LABEL}
    return order_groups(group_by(rows, dimension), names)


# =============================================================================
# CSV
# =============================================================================

def to_csv(report: MaterializedReport) -> str:
    """Render a report as CSV text, BOM included."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    kind = ReportKind(report.kind)

    if kind == ReportKind.SUMMARY_DETAIL:
        # First certificate on the principal's line, the rest on continuation lines
        writer.writerow(["STT", "Họ tên", "Tên chứng chỉ", "Số tiết", "Tổng tiết"])
        for index, row in enumerate(report.rows, start=1):
            if not row.certificates:
                writer.writerow([index, row.name, "", "", format_number(row.total_credits)])
                continue
            first, rest = row.certificates[0], row.certificates[1:]
            writer.writerow([index, row.name, first.name, format_number(first.credits),
                             format_number(row.total_credits)])
            for line in rest:
                writer.writerow(["", "", line.name, format_number(line.credits), ""])

    elif kind in GROUP_HEADER_LABELS:
        writer.writerow(["STT", "Họ tên", "Tổng số tiết"])
        label = GROUP_HEADER_LABELS[kind]
        for group in report_groups(report):
            writer.writerow([f"{label}: {group.group_name}", "", ""])
            for index, row in enumerate(group.rows, start=1):
                writer.writerow([index, row.name, format_number(row.total_credits)])
            writer.writerow([GROUP_TOTAL_LABEL, "", format_number(group.total_credits)])
            writer.writerow(["", "", ""])

    else:
        keys = list(report.headers.keys())
        writer.writerow(["STT"] + list(report.headers.values()))
        for index, row in enumerate(report.rows, start=1):
            writer.writerow([index] + [format_cell(key, getattr(row, key, "")) for key in keys])

    return CSV_BOM + buffer.getvalue()


# =============================================================================
# HTML
# =============================================================================

_HTML_STYLE = """
body { font-family: 'Times New Roman', serif; margin: 24px; }
h1 { font-size: 20px; text-align: center; }
p.meta { text-align: center; color: #555; }
table { width: 100%; border-collapse: collapse; }
th, td { border: 1px solid #333; padding: 4px 8px; vertical-align: top; }
th { background: #f0f0f0; }
td.num { text-align: center; }
tr.group td { font-weight: bold; background: #e6f4f1; }
tr.total td { font-weight: bold; }
"""


def _html_table(report: MaterializedReport) -> str:
    kind = ReportKind(report.kind)
    if not report.rows:
        return f"<p>{escape(EMPTY_REPORT_MESSAGE)}</p>"

    parts = ["<table>"]
    if kind == ReportKind.SUMMARY_DETAIL:
        parts.append("<thead><tr><th>STT</th><th>Họ và tên</th><th>Tên chứng chỉ</th>"
                     "<th>Số tiết</th><th>Tổng tiết</th></tr></thead><tbody>")
        for index, row in enumerate(report.rows, start=1):
            lines = row.certificates or [None]
            span = len(lines)
            for position, line in enumerate(lines):
                parts.append("<tr>")
                if position == 0:
                    parts.append(f'<td class="num" rowspan="{span}">{index}</td>')
                    parts.append(f'<td rowspan="{span}">{escape(row.name)}</td>')
                parts.append(f"<td>{escape(line.name) if line else ''}</td>")
                parts.append(f'<td class="num">{format_number(line.credits) if line else ""}</td>')
                if position == 0:
                    parts.append(f'<td class="num" rowspan="{span}">{format_number(row.total_credits)}</td>')
                parts.append("</tr>")

    elif kind in GROUP_HEADER_LABELS:
        label = GROUP_HEADER_LABELS[kind]
        parts.append("<thead><tr><th>STT</th><th>Họ tên</th><th>Tổng số tiết</th></tr></thead><tbody>")
        for group in report_groups(report):
            parts.append(f'<tr class="group"><td colspan="3">{escape(label)}: {escape(group.group_name)}</td></tr>')
            for index, row in enumerate(group.rows, start=1):
                parts.append(f'<tr><td class="num">{index}</td><td>{escape(row.name)}</td>'
                             f'<td class="num">{format_number(row.total_credits)}</td></tr>')
            parts.append(f'<tr class="total"><td colspan="2">{GROUP_TOTAL_LABEL}</td>'
                         f'<td class="num">{format_number(group.total_credits)}</td></tr>')

    else:
        keys = list(report.headers.keys())
        header_cells = "".join(f"<th>{escape(label)}</th>" for label in report.headers.values())
        parts.append(f"<thead><tr><th>STT</th>{header_cells}</tr></thead><tbody>")
        for index, row in enumerate(report.rows, start=1):
            cells = "".join(f"<td>{escape(format_cell(key, getattr(row, key, '')))}</td>" for key in keys)
            parts.append(f'<tr><td class="num">{index}</td>{cells}</tr>')

    parts.append("</tbody></table>")
    return "".join(parts)


def to_html(report: MaterializedReport, subtitle: str = "") -> str:
    """Minimal standalone HTML document, suitable for printing."""
    meta = f'<p class="meta">{escape(subtitle)}</p>' if subtitle else ""
    return (
        "<!DOCTYPE html>\n"
        '<html lang="vi"><head><meta charset="utf-8">'
        f"<title>{escape(report.title)}</title>"
        f"<style>{_HTML_STYLE}</style></head>"
        f"<body><h1>{escape(report.title)}</h1>{meta}"
        f"{_html_table(report)}"
        "</body></html>\n"
    )
