from flask import jsonify, request, Response, current_app
from flask_login import current_user
from ticketdesk.admin import admin_bp
from ticketdesk.auth.decorators import admin_required, kpi_viewer_required
from ticketdesk.kpi import compute_kpis, filter_by_created, group_by_month, group_by_week_of_month, period_range, trend_series
from ticketdesk.reports import build_kpi_csv, build_kpi_workbook, report_filename, save_kpi_report
from ticketdesk.services import get_kpi_report_repository, get_lifecycle, get_ticket_repository
from ticketdesk.utils import utcnow
from .forms import KpiFilterForm
from datetime import datetime, time, timezone
import logging
import pymongo

logger = logging.getLogger(__name__)


@admin_bp.route('/tickets/<string:ticket_id>/delete', methods=['POST'])
@admin_required
def delete_ticket(ticket_id):
    get_lifecycle().delete_ticket(ticket_id, actor=current_user)
    return jsonify({"deleted": ticket_id})


def _selected_project(form):
    """Los usuarios que no son admin solo ven los KPI de su propio proyecto."""
    if not current_user.is_admin and current_user.project:
        return current_user.project
    return (form.project.data or '').strip()


def _date_range(form, now):
    if form.start_date.data or form.end_date.data:
        start = datetime.combine(form.start_date.data, time.min, tzinfo=timezone.utc) if form.start_date.data else None
        end = datetime.combine(form.end_date.data, time.max, tzinfo=timezone.utc) if form.end_date.data else None
        return start, end
    if form.period.data:
        return period_range(form.period.data, now, form.n.data or 1)
    return None, None


def _load_kpi_tickets(form, now):
    project = _selected_project(form)
    query = {}
    if project:
        query["project"] = project
    tickets = get_ticket_repository().find(query)
    start, end = _date_range(form, now)
    if start or end:
        tickets = filter_by_created(tickets, start, end)
    return project, tickets, start, end


@admin_bp.route('/kpi', methods=['GET'])
@kpi_viewer_required
def kpi_summary():
    form = KpiFilterForm(request.args)
    if not form.validate():
        return jsonify({"error": "Filtros inválidos.", "errors": form.errors}), 400

    now = utcnow()
    try:
        project, tickets, start, end = _load_kpi_tickets(form, now)
    except pymongo.errors.PyMongoError as e:
        current_app.logger.error(f"Error al cargar tickets para KPI: {e}", exc_info=True)
        return jsonify({"error": "Error al calcular los KPI."}), 500

    summary = compute_kpis(tickets, now=now)
    result = {
        "project": project,
        "start": start.isoformat() if start else None,
        "end": end.isoformat() if end else None,
        "summary": summary.to_dict(),
    }

    if form.trend.data == 'week_of_month':
        reference = end or now
        buckets = group_by_week_of_month(tickets, reference.year, reference.month)
    elif form.trend.data == 'month':
        buckets = group_by_month(tickets, form.n.data or 1, end or now)
    else:
        buckets = None
    if buckets is not None:
        result["trend"] = [
            {"label": label, **{k: v for k, v in s.to_dict().items() if k != "details"}}
            for label, s in trend_series(buckets, now=now)
        ]

    logger.info(f"Usuario {current_user.email} consultó los KPI del proyecto '{project}' ({summary.count} tickets).")
    return jsonify(result)


def _export(extension):
    form = KpiFilterForm(request.args)
    if not form.validate():
        return jsonify({"error": "Filtros inválidos.", "errors": form.errors}), 400

    now = utcnow()
    try:
        project, tickets, _, _ = _load_kpi_tickets(form, now)
        summary = compute_kpis(tickets, now=now)
        save_kpi_report(get_kpi_report_repository(), summary, actor=current_user, project=project)
    except pymongo.errors.PyMongoError as e:
        current_app.logger.error(f"Error al exportar el informe KPI: {e}", exc_info=True)
        return jsonify({"error": "Error al generar el informe KPI."}), 500

    filename = report_filename(project, extension)
    logger.info(f'Usuario {current_user.email} ha generado un informe KPI en ".{extension}" con {summary.count} tickets.')

    if extension == "xlsx":
        return Response(
            build_kpi_workbook(summary).read(),
            mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            headers={"Content-Disposition": f"attachment;filename={filename}"}
        )
    return Response(
        build_kpi_csv(summary),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment;filename={filename}"}
    )


@admin_bp.route('/kpi/export.xlsx', methods=['GET'])
@kpi_viewer_required
def export_kpi_xlsx():
    return _export("xlsx")


@admin_bp.route('/kpi/export.csv', methods=['GET'])
@kpi_viewer_required
def export_kpi_csv():
    return _export("csv")
