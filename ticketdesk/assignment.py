import logging
import pymongo
from ticketdesk.email import Notification, KIND_ASSIGNMENT, notify
from ticketdesk.exceptions import DatabaseQueryError, TicketNotFoundError, UnknownResponderError
from ticketdesk.models import Assignee, Comment, Outcome, ROLE_SYSTEM
from ticketdesk.utils import utcnow

logger = logging.getLogger(__name__)


def resolve_responder(users, responder_email, actor, project=None):
    """
    Terna {name, email, role} del responsable. Un usuario que se asigna a
    sí mismo sin figurar en el directorio (p. ej. un jefe de proyecto) se
    registra con su propia identidad.
    """
    identity = users.find_responder(responder_email, project)
    if identity is None and actor is not None and responder_email == actor.email:
        identity = {"name": actor.display_name, "email": actor.email, "role": actor.role}
    if identity is None:
        raise UnknownResponderError(email=responder_email)
    return Assignee(**identity)


class AssignmentProtocol:
    """Transfiere la propiedad de un ticket a un responsable."""
    def __init__(self, tickets, users, dispatcher, clock=utcnow, link_base=None):
        self.tickets = tickets
        self.users = users
        self.dispatcher = dispatcher
        self.clock = clock
        self.link_base = link_base

    def assign(self, ticket_id, actor, responder_email):
        """
        Asigna el ticket y deja el comentario de sistema
        "Ticket assigned to {name} by {assigner}.". No evita entradas
        duplicadas si ya estaba asignado al mismo responsable.
        """
        ticket = self._load(ticket_id)
        assignee = resolve_responder(self.users, responder_email, actor, ticket.project or None)
        assigner = actor.username
        now = self.clock()
        comment = Comment(
            message=f"Ticket assigned to {assignee.name} by {assigner}.",
            timestamp=now,
            author_email=ROLE_SYSTEM,
            author_name=ROLE_SYSTEM,
            author_role=ROLE_SYSTEM,
        )
        try:
            found = self.tickets.update(ticket_id, set_fields={
                "assignedTo": assignee.to_document(),
                "assignedBy": assigner,
                "lastUpdated": now,
            }, push_comment=comment.to_document())
        except pymongo.errors.PyMongoError as e:
            logger.error(f"Error al asignar el ticket {ticket_id}: {e}", exc_info=True)
            raise DatabaseQueryError(original_exception=e)
        if not found:
            raise TicketNotFoundError(ticket_id=ticket_id)

        logger.info(f"Ticket {ticket.ticket_number} asignado a {assignee.email} por {assigner}.")

        # Solo la notificación de asignación al solicitante, nunca la de comentario.
        warnings = []
        notify(self.dispatcher, Notification(
            recipients=[ticket.email] if ticket.email else [],
            subject=f"Your ticket has been assigned (ID: {ticket.ticket_number})",
            ticket_number=ticket.ticket_number,
            message=comment.message,
            kind=KIND_ASSIGNMENT,
            link=f"{self.link_base.rstrip('/')}/{ticket_id}" if self.link_base else None,
        ), warnings)
        return Outcome(self.tickets.find_by_id(ticket_id), warnings)

    def unassign(self, ticket_id, actor):
        """Deja el ticket sin responsable. No genera comentario de auditoría."""
        ticket = self._load(ticket_id)
        try:
            found = self.tickets.update(ticket_id, set_fields={
                "assignedTo": None,
                "assignedBy": None,
                "lastUpdated": self.clock(),
            })
        except pymongo.errors.PyMongoError as e:
            logger.error(f"Error al desasignar el ticket {ticket_id}: {e}", exc_info=True)
            raise DatabaseQueryError(original_exception=e)
        if not found:
            raise TicketNotFoundError(ticket_id=ticket_id)
        logger.info(f"Ticket {ticket.ticket_number} desasignado por {actor.email}.")
        return Outcome(self.tickets.find_by_id(ticket_id))

    def _load(self, ticket_id):
        try:
            ticket = self.tickets.find_by_id(ticket_id)
        except pymongo.errors.PyMongoError as e:
            logger.error(f"Error al leer el ticket {ticket_id}: {e}", exc_info=True)
            raise DatabaseQueryError(original_exception=e)
        if ticket is None:
            raise TicketNotFoundError(ticket_id=ticket_id)
        return ticket
