# ticketdesk/kpi.py
#
# Métricas de SLA/KPI calculadas a partir del historial de cada ticket.
# Todo es de solo lectura: ninguna función de este módulo escribe en la BD,
# así que se pueden recalcular en cada cambio que emita el almacén.

import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from ticketdesk.models import Ticket, ROLE_RESOLVER, ROLE_SYSTEM, ROLE_USER, STATUS_RESOLVED, TERMINAL_STATUSES
from ticketdesk.utils import duration_ms, to_datetime, utcnow

logger = logging.getLogger(__name__)

ASSIGNMENT_MARKER = "assigned to"
RESOLUTION_MARKER = "resolution updated"


class SlaTarget:
    def __init__(self, response, resolution):
        self.response = response
        self.resolution = resolution

    @property
    def response_ms(self):
        return self.response.total_seconds() * 1000

    @property
    def resolution_ms(self):
        return self.resolution.total_seconds() * 1000

    def __repr__(self):
        return f"<SlaTarget respuesta={self.response} resolución={self.resolution}>"


# Objetivos fijos por prioridad (no configurables)
SLA_TARGETS = {
    "Critical": SlaTarget(timedelta(minutes=10), timedelta(hours=1)),
    "High": SlaTarget(timedelta(hours=1), timedelta(hours=2)),
    "Medium": SlaTarget(timedelta(hours=2), timedelta(hours=6)),
    "Low": SlaTarget(timedelta(hours=6), timedelta(days=1)),
}


def _as_ticket(ticket):
    return Ticket.from_document(ticket) if isinstance(ticket, dict) else ticket


def find_assigned_at(comments):
    """Instante del primer comentario 'assigned to' de rol user o system."""
    for comment in comments:
        if comment.author_role not in (ROLE_USER, ROLE_SYSTEM):
            continue
        if comment.message and ASSIGNMENT_MARKER in comment.message.lower():
            instant = to_datetime(comment.timestamp)
            if instant is not None:
                return instant
    return None


def find_resolved_at(ticket):
    """
    Instante del primer comentario 'resolution updated' de rol resolver.
    Si no hay, un ticket en Resolved usa `lastUpdated`.
    """
    for comment in ticket.comments:
        if comment.author_role != ROLE_RESOLVER:
            continue
        if comment.message and RESOLUTION_MARKER in comment.message.lower():
            instant = to_datetime(comment.timestamp)
            if instant is not None:
                return instant
    if ticket.status == STATUS_RESOLVED and ticket.last_updated:
        return to_datetime(ticket.last_updated)
    return None


def is_breached(priority, created, assigned_at, resolved_at, status=None, last_updated=None, now=None):
    """
    Un ticket incumple si su respuesta o su resolución supera el objetivo de
    su prioridad, o si alguno de los dos hitos sigue sin producirse cuando ya
    ha pasado su ventana. Para tickets cerrados el reloj se para en
    `lastUpdated`. Sin prioridad conocida no hay objetivo.
    """
    target = SLA_TARGETS.get(priority)
    if target is None:
        return False
    created, assigned_at, resolved_at, last_updated = (
        to_datetime(v) for v in (created, assigned_at, resolved_at, last_updated)
    )

    response = duration_ms(created, assigned_at)
    resolution = duration_ms(assigned_at, resolved_at)
    if response is not None and response > target.response_ms:
        return True
    if resolution is not None and resolution > target.resolution_ms:
        return True

    reference = to_datetime(now) or utcnow()
    if status in TERMINAL_STATUSES and last_updated is not None:
        reference = last_updated
    if assigned_at is None and created is not None and reference - created > target.response:
        return True
    if resolved_at is None and assigned_at is not None and reference - assigned_at > target.resolution:
        return True
    return False


class KpiRow:
    """Una fila por ticket asignado, lista para tabla u hoja de cálculo."""
    def __init__(self, ticket, created, assigned_at, resolved_at, response_ms, resolution_ms, breached):
        self.ticket_id = ticket.id
        self.ticket_number = ticket.ticket_number
        self.subject = ticket.subject
        self.assignee = ticket.assignee_email
        self.priority = ticket.priority
        self.status = ticket.status
        self.created = created
        self.assigned_at = assigned_at
        self.resolved_at = resolved_at
        self.response_ms = response_ms
        self.resolution_ms = resolution_ms
        self.breached = breached

    def to_dict(self):
        return {
            "ticketId": self.ticket_id,
            "ticketNumber": self.ticket_number,
            "subject": self.subject,
            "assignee": self.assignee,
            "priority": self.priority,
            "status": self.status,
            "created": self.created.isoformat() if self.created else None,
            "assigned": self.assigned_at.isoformat() if self.assigned_at else None,
            "resolved": self.resolved_at.isoformat() if self.resolved_at else None,
            "responseTime": self.response_ms,
            "resolutionTime": self.resolution_ms,
            "breached": self.breached,
        }


class KpiSummary:
    def __init__(self, count, avg_response_ms, avg_resolution_ms, details):
        self.count = count
        self.avg_response_ms = avg_response_ms
        self.avg_resolution_ms = avg_resolution_ms
        self.details = details

    @property
    def breached_count(self):
        return sum(1 for row in self.details if row.breached)

    def to_dict(self):
        return {
            "count": self.count,
            "avgResponseMs": self.avg_response_ms,
            "avgResolutionMs": self.avg_resolution_ms,
            "breachedCount": self.breached_count,
            "details": [row.to_dict() for row in self.details],
        }


def compute_kpis(tickets, now=None):
    """
    Calcula tiempos de respuesta y resolución de un conjunto de tickets.

    Solo cuentan los tickets con `assignedTo.email`. Las medias dividen entre
    el número de tickets asignados aunque a algunos les falte la duración
    (esos tickets suman cero).
    """
    now = to_datetime(now) or utcnow()
    total_response = 0
    total_resolution = 0
    details = []

    for ticket in map(_as_ticket, tickets):
        if not ticket.assignee_email:
            continue
        created = to_datetime(ticket.created)
        assigned_at = find_assigned_at(ticket.comments)
        resolved_at = find_resolved_at(ticket)
        response_ms = duration_ms(created, assigned_at)
        resolution_ms = duration_ms(assigned_at, resolved_at)
        if response_ms:
            total_response += response_ms
        if resolution_ms:
            total_resolution += resolution_ms
        breached = is_breached(ticket.priority, created, assigned_at, resolved_at,
                               status=ticket.status, last_updated=ticket.last_updated, now=now)
        details.append(KpiRow(ticket, created, assigned_at, resolved_at, response_ms, resolution_ms, breached))

    count = len(details)
    return KpiSummary(
        count=count,
        avg_response_ms=total_response / count if count else 0,
        avg_resolution_ms=total_resolution / count if count else 0,
        details=details,
    )

# -----------------------------------------------
# AGRUPACIÓN POR PERIODOS
# -----------------------------------------------

WEEK_OF_MONTH_LABELS = ["Week 1", "Week 2", "Week 3", "Week 4"]
PERIOD_PRESETS = ("this_week", "this_month", "last_n_weeks", "last_n_months")


def week_of_month(value):
    """Semana del mes: días 1-7, 8-14, 15-21 y 22 hasta fin de mes."""
    instant = to_datetime(value)
    if instant is None:
        return None
    return min((instant.day - 1) // 7 + 1, 4)


def _start_of_day(instant):
    return instant.replace(hour=0, minute=0, second=0, microsecond=0)


def _shift_months(year, month, delta):
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def period_range(preset, now=None, n=1):
    """
    Rango [inicio, fin] de un periodo predefinido, en UTC.

    `last_n_weeks` y `last_n_months` cuentan periodos de calendario
    completos e incluyen el actual (n=1 equivale a this_week/this_month).
    """
    now = to_datetime(now) or utcnow()
    n = max(1, int(n))
    today = _start_of_day(now)
    if preset in ("this_week", "last_n_weeks"):
        weeks = 1 if preset == "this_week" else n
        start = today - timedelta(days=today.weekday()) - timedelta(weeks=weeks - 1)
    elif preset in ("this_month", "last_n_months"):
        months = 1 if preset == "this_month" else n
        year, month = _shift_months(now.year, now.month, -(months - 1))
        start = datetime(year, month, 1, tzinfo=timezone.utc)
    else:
        raise ValueError(f"Periodo desconocido: {preset}")
    return start, now


def filter_by_created(tickets, start=None, end=None):
    selected = []
    for ticket in map(_as_ticket, tickets):
        created = to_datetime(ticket.created)
        if created is None:
            continue
        if start is not None and created < to_datetime(start):
            continue
        if end is not None and created > to_datetime(end):
            continue
        selected.append(ticket)
    return selected


def group_by_week_of_month(tickets, year=None, month=None):
    """Agrupa por semana del mes. Con `year`/`month` solo entra ese mes."""
    buckets = OrderedDict((label, []) for label in WEEK_OF_MONTH_LABELS)
    for ticket in map(_as_ticket, tickets):
        created = to_datetime(ticket.created)
        if created is None:
            continue
        if year is not None and created.year != year:
            continue
        if month is not None and created.month != month:
            continue
        buckets[WEEK_OF_MONTH_LABELS[week_of_month(created) - 1]].append(ticket)
    return buckets


def group_by_month(tickets, months=1, now=None):
    """Agrupa en los últimos `months` meses de calendario, etiquetados 'YYYY-MM'."""
    now = to_datetime(now) or utcnow()
    buckets = OrderedDict()
    for delta in range(-(months - 1), 1):
        year, month = _shift_months(now.year, now.month, delta)
        buckets[f"{year:04d}-{month:02d}"] = []
    for ticket in map(_as_ticket, tickets):
        created = to_datetime(ticket.created)
        if created is None:
            continue
        label = f"{created.year:04d}-{created.month:02d}"
        if label in buckets:
            buckets[label].append(ticket)
    return buckets


def trend_series(buckets, now=None):
    """Aplica compute_kpis a cada grupo: [(etiqueta, KpiSummary), ...]."""
    return [(label, compute_kpis(group, now=now)) for label, group in buckets.items()]
