from datetime import datetime, timedelta, timezone
from io import BytesIO
from openpyxl import load_workbook
from unittest.mock import Mock
from ticketdesk.auth.models import Persona
from ticketdesk.kpi import compute_kpis
from ticketdesk.reports import (
    KPI_HEADERS, build_kpi_csv, build_kpi_workbook, ms_to_minutes, report_filename, save_kpi_report
)

T = datetime(2024, 5, 6, 9, 0, 0, tzinfo=timezone.utc)


def _summary():
    ticket = {
        "ticketNumber": "IN100000",
        "subject": "ERP caído",
        "priority": "High",
        "status": "Resolved",
        "created": T,
        "assignedTo": {"name": "Jane", "email": "jane@example.com", "role": "employee"},
        "comments": [
            {"message": "Assigned to Jane", "timestamp": T + timedelta(minutes=30), "authorRole": "user"},
            {"message": "Resolution updated by Jane:\nOK", "timestamp": T + timedelta(hours=3), "authorRole": "resolver"},
        ],
    }
    pending = {
        "ticketNumber": "IN100001",
        "subject": "Sin respuesta",
        "priority": "Low",
        "status": "Open",
        "created": T,
        "assignedTo": {"name": "Jane", "email": "jane@example.com", "role": "employee"},
        "comments": [],
    }
    return compute_kpis([ticket, pending], now=T + timedelta(hours=4))


def test_ms_to_minutes():
    assert ms_to_minutes(90 * 1000) == "1.50"
    assert ms_to_minutes(None) == ""


def test_report_filename_is_slugified():
    assert report_filename("Proyecto Ñandú / Fase 2", "xlsx") == "KPI_Report_proyecto-nandu-fase-2.xlsx"
    assert report_filename("", "csv") == "KPI_Report_Project.csv"


def test_csv_has_chart_and_table_sections():
    lines = build_kpi_csv(_summary()).splitlines()

    assert lines[0] == '"KPI Bar Chart Data:"'
    assert lines[2] == '"IN100000","30.00","150.00"'
    assert '"KPI Table Data:"' in lines
    table_start = lines.index('"KPI Table Data:"')
    assert lines[table_start + 1] == ",".join(f'"{h}"' for h in KPI_HEADERS)
    assert lines[table_start + 2] == '"IN100000","ERP caído","jane@example.com","30.00","150.00","Resolved"'
    assert lines[table_start + 3] == '"IN100001","Sin respuesta","jane@example.com","","","Open"'


def test_workbook_rows():
    workbook = load_workbook(BytesIO(build_kpi_workbook(_summary()).read()))
    rows = list(workbook["KPI Report"].iter_rows(values_only=True))

    assert list(rows[0]) == KPI_HEADERS
    assert rows[1][0] == "IN100000"
    assert rows[1][3] == "30.00"
    assert list(workbook["Summary"].iter_rows(values_only=True))[1][0] == 2


def test_save_kpi_report_stores_snapshot():
    reports = Mock()
    reports.add.return_value = "r1"
    actor = Persona(email="admin@example.com", role="admin", _id="u1")

    assert save_kpi_report(reports, _summary(), actor=actor, project="Alpha") == "r1"

    stored = reports.add.call_args.args[0]
    assert stored["project"] == "Alpha"
    assert stored["createdBy"] == {"uid": "u1", "email": "admin@example.com"}
    assert stored["summary"]["totalTickets"] == 2
    assert stored["tableData"][0]["ticketNumber"] == "IN100000"
