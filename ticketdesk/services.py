# ticketdesk/services.py
#
# Construye los servicios del núcleo con los repositorios MongoDB, el
# despachador de notificaciones y la configuración de la aplicación actual.

from flask import current_app
from ticketdesk import mongo
from ticketdesk.assignment import AssignmentProtocol
from ticketdesk.comments import CommentTrail
from ticketdesk.lifecycle import TicketLifecycle
from ticketdesk.repositories import (
    MongoCounterRepository, MongoKpiReportRepository, MongoTicketRepository, MongoUserRepository
)
from ticketdesk.sequence import SequenceGenerator


def get_dispatcher():
    return current_app.extensions["notifier"]


def get_ticket_repository():
    return MongoTicketRepository(mongo.db)


def get_user_repository():
    return MongoUserRepository(mongo.db)


def get_kpi_report_repository():
    return MongoKpiReportRepository(mongo.db)


def get_sequence():
    return SequenceGenerator(
        MongoCounterRepository(mongo.db),
        max_retries=current_app.config.get("SEQUENCE_MAX_RETRIES", 3),
    )


def get_lifecycle():
    config = current_app.config
    return TicketLifecycle(
        tickets=get_ticket_repository(),
        users=get_user_repository(),
        sequence=get_sequence(),
        dispatcher=get_dispatcher(),
        attachment_max_bytes=config.get("ATTACHMENT_MAX_BYTES", 1024 * 1024),
        duplicate_window_hours=config.get("DUPLICATE_WINDOW_HOURS", 24),
        link_base=config.get("TICKET_LINK_BASE"),
    )


def get_assignment():
    return AssignmentProtocol(
        tickets=get_ticket_repository(),
        users=get_user_repository(),
        dispatcher=get_dispatcher(),
        link_base=current_app.config.get("TICKET_LINK_BASE"),
    )


def get_trail():
    return CommentTrail(
        tickets=get_ticket_repository(),
        dispatcher=get_dispatcher(),
        link_base=current_app.config.get("TICKET_LINK_BASE"),
    )
