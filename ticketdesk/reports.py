import csv
import logging
from io import BytesIO, StringIO
from openpyxl import Workbook
from slugify import slugify
from ticketdesk.utils import utcnow

logger = logging.getLogger(__name__)

KPI_HEADERS = ['Ticket #', 'Subject', 'Assignee', 'Response Time (min)', 'Resolution Time (min)', 'Status']
CHART_HEADERS = ['Ticket #', 'Response Time (min)', 'Resolution Time (min)']


def ms_to_minutes(value):
    """Milisegundos a minutos con dos decimales; vacío si no hay duración."""
    if not value:
        return ''
    return f"{value / 1000 / 60:.2f}"


def kpi_table_rows(summary):
    return [
        [row.ticket_number, row.subject, row.assignee,
         ms_to_minutes(row.response_ms), ms_to_minutes(row.resolution_ms), row.status]
        for row in summary.details
    ]


def kpi_chart_rows(summary):
    return [
        [row.ticket_number, ms_to_minutes(row.response_ms), ms_to_minutes(row.resolution_ms)]
        for row in summary.details
    ]


def report_filename(project, extension):
    return f"KPI_Report_{slugify(project or '') or 'Project'}.{extension}"


def build_kpi_csv(summary):
    """CSV con dos secciones: datos del gráfico y tabla de KPIs."""
    output = StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator='\n')
    writer.writerow(['KPI Bar Chart Data:'])
    writer.writerow(CHART_HEADERS)
    writer.writerows(kpi_chart_rows(summary))
    writer.writerow([])
    writer.writerow(['KPI Table Data:'])
    writer.writerow(KPI_HEADERS)
    writer.writerows(kpi_table_rows(summary))
    return output.getvalue()


def build_kpi_workbook(summary):
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = "KPI Report"

    worksheet.append(KPI_HEADERS)
    for row in kpi_table_rows(summary):
        worksheet.append(row)

    totals = workbook.create_sheet("Summary")
    totals.append(['Total Tickets', 'Avg Response (min)', 'Avg Resolution (min)', 'Breached'])
    totals.append([summary.count, ms_to_minutes(summary.avg_response_ms),
                   ms_to_minutes(summary.avg_resolution_ms), summary.breached_count])

    output = BytesIO()
    workbook.save(output)
    output.seek(0)
    return output


def save_kpi_report(reports, summary, actor=None, project=''):
    """Guarda una copia del informe exportado en `kpi_reports`."""
    report = {
        "createdAt": utcnow(),
        "createdBy": {"uid": actor.id, "email": actor.email} if actor else None,
        "project": project or '',
        "summary": {
            "totalTickets": summary.count,
            "avgResponse": summary.avg_response_ms,
            "avgResolution": summary.avg_resolution_ms,
        },
        "chartData": [
            {"ticketNumber": r[0], "responseTime": r[1], "resolutionTime": r[2]} for r in kpi_chart_rows(summary)
        ],
        "tableData": [dict(zip(
            ["ticketNumber", "subject", "assignee", "responseTime", "resolutionTime", "status"], r
        )) for r in kpi_table_rows(summary)],
    }
    report_id = reports.add(report)
    logger.info(f"Informe KPI {report_id} guardado para el proyecto '{project}' ({summary.count} tickets).")
    return report_id
