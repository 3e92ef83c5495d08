# ticketdesk/lifecycle.py

import logging
from datetime import timedelta
import pymongo
from ticketdesk.assignment import resolve_responder
from ticketdesk.email import Notification, KIND_ASSIGNMENT, KIND_COMMENT, KIND_CREATION, KIND_RESOLUTION, notify
from ticketdesk.exceptions import (
    DatabaseQueryError, DuplicateTicketError, MissingResolutionError, TicketNotFoundError,
    SequenceGenerationError, TicketValidationError
)
from ticketdesk.models import (
    Comment, Outcome, DEFAULT_PRIORITY, PRIORITIES, ROLE_RESOLVER, ROLE_USER,
    STATUS_OPEN, STATUSES, TERMINAL_STATUSES, CATEGORY_INCIDENT
)
from ticketdesk.sequence import prefix_matches
from ticketdesk.utils import is_valid_email, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

RESOLUTION_SECTION = "Resolution"
OTHER_CATEGORY = "Others"


def check_transition(current_status, new_status, resolution):
    """
    Grafo de estados libre salvo una condición: entrar en Resolved o Closed
    exige una resolución no vacía. Si no se cumple, lanza
    MissingResolutionError indicando la sección a la que dirigir al usuario.
    """
    if new_status not in STATUSES:
        raise TicketValidationError({"status": f"Estado desconocido: {new_status}"})
    if new_status == current_status:
        return
    if new_status in TERMINAL_STATUSES and not (resolution and resolution.strip()):
        raise MissingResolutionError(section=RESOLUTION_SECTION, status=new_status)


def validate_submission(fields, attachment_max_bytes):
    """Valida el formulario de alta. Devuelve un diccionario campo -> error."""
    errors = {}
    name = (fields.get("name") or "").strip()
    email = (fields.get("email") or "").strip()
    subject = (fields.get("subject") or "").strip()
    description = (fields.get("description") or "").strip()

    if not name:
        errors["name"] = "Name is required"
    if not email:
        errors["email"] = "Email is required"
    elif not is_valid_email(email):
        errors["email"] = "Invalid email format"
    if not subject:
        errors["subject"] = "Subject is required"
    if not description:
        errors["description"] = "Description is required"
    elif len(description) < 10:
        errors["description"] = "Description must be at least 10 characters"

    priority = fields.get("priority")
    if priority and priority not in PRIORITIES:
        errors["priority"] = f"Prioridad desconocida: {priority}"

    for attachment in fields.get("attachments") or []:
        if (attachment.get("size") or 0) > attachment_max_bytes:
            errors["attachments"] = "Each attachment must be less than 1MB."
            break
    return errors


class TicketLifecycle:
    """
    Máquina de estados del ticket: alta, cambios de detalle (estado,
    prioridad, categoría, asignación) y entrega de la resolución.

    Cada cambio aceptado se guarda con una sola actualización del documento
    junto con su comentario de auditoría, de modo que un fallo del almacén
    deja el ticket como estaba.
    """
    def __init__(self, tickets, users, sequence, dispatcher, clock=utcnow,
                 attachment_max_bytes=1024 * 1024, duplicate_window_hours=24, link_base=None):
        self.tickets = tickets
        self.users = users
        self.sequence = sequence
        self.dispatcher = dispatcher
        self.clock = clock
        self.attachment_max_bytes = attachment_max_bytes
        self.duplicate_window = timedelta(hours=duplicate_window_hours)
        self.link_base = link_base

    # --- Alta ---

    def create_ticket(self, fields, actor=None):
        errors = validate_submission(fields, self.attachment_max_bytes)
        if errors:
            raise TicketValidationError(errors)

        email = fields["email"].strip()
        subject = fields["subject"].strip()
        now = self.clock()
        try:
            duplicate = self.tickets.find_recent_duplicate(email, subject, to_naive_utc(now - self.duplicate_window))
        except pymongo.errors.PyMongoError as e:
            logger.error(f"Error al comprobar tickets duplicados de {email}: {e}", exc_info=True)
            raise DatabaseQueryError(original_exception=e)
        if duplicate:
            logger.warning(f"Alta rechazada: ticket duplicado '{subject}' de {email} en la ventana de {self.duplicate_window}.")
            raise DuplicateTicketError()

        category = (fields.get("category") or CATEGORY_INCIDENT).strip()
        if category == OTHER_CATEGORY:
            category = (fields.get("otherIssue") or "").strip() or OTHER_CATEGORY

        # Si falla la numeración no se guarda nada: SequenceGenerationError se propaga.
        ticket_number = self._draw_number(category)

        document = {
            "ticketNumber": ticket_number,
            "subject": subject,
            "customer": fields["name"].strip(),
            "email": email,
            "project": fields.get("project") or "",
            "category": category,
            "module": fields.get("module") or None,
            "subCategory": fields.get("subCategory") or None,
            "typeOfIssue": fields.get("typeOfIssue") or None,
            "priority": fields.get("priority") or DEFAULT_PRIORITY,
            "description": fields["description"].strip(),
            "status": STATUS_OPEN,
            "resolution": "",
            "created": now,
            "lastUpdated": now,
            "starred": False,
            "attachments": list(fields.get("attachments") or []),
            "assignedTo": None,
            "assignedBy": None,
            "userId": actor.id if actor else None,
            "comments": [],
        }
        try:
            ticket_id = self.tickets.insert(document)
        except pymongo.errors.PyMongoError as e:
            logger.error(f"Error de base de datos al crear el ticket {ticket_number}: {e}", exc_info=True)
            raise DatabaseQueryError(original_exception=e)

        logger.info(f"Ticket {ticket_number} creado por {email} en el proyecto '{document['project']}'.")

        ticket = self.tickets.find_by_id(ticket_id)
        warnings = []
        members = self.users.find_project_member_emails(document["project"])
        notify(self.dispatcher, Notification(
            recipients=members,
            subject=f" # {ticket_number} - {subject}",
            ticket_number=ticket_number,
            message=f"{document['customer']} ({email}) raised a {document['priority']} priority ticket:\n{document['description']}",
            kind=KIND_CREATION,
            link=self._link(ticket_id),
        ), warnings)
        return Outcome(ticket, warnings)

    # --- Cambios de detalle ---

    def update_details(self, ticket_id, actor, priority=None, status=None, category=None, assignee_email=None):
        """
        Aplica los campos que difieren del ticket guardado, en el orden
        prioridad, estado, categoría, asignación, y deja un único comentario
        de auditoría con todos los cambios.
        """
        ticket = self._load(ticket_id)
        updates = {}
        changes = []

        if priority and priority != ticket.priority:
            if priority not in PRIORITIES:
                raise TicketValidationError({"priority": f"Prioridad desconocida: {priority}"})
            updates["priority"] = priority
            changes.append(f"Priority changed to {priority}")

        if status and status != ticket.status:
            check_transition(ticket.status, status, ticket.resolution)
            updates["status"] = status
            changes.append(f"Status changed to {status}")

        # La asignación se resuelve antes de consumir un número de la secuencia.
        assignee = None
        if assignee_email and assignee_email != ticket.assignee_email:
            assignee = resolve_responder(self.users, assignee_email, actor, ticket.project or None)

        if category and category != ticket.category:
            new_number = self._draw_number(category)
            updates["category"] = category
            updates["ticketNumber"] = new_number
            changes.append(f"Category changed to {category} and Ticket ID updated to {new_number}")

        if assignee:
            updates["assignedTo"] = assignee.to_document()
            updates["assignedBy"] = actor.username
            changes.append(f"Assigned to {assignee.name}")

        if not updates:
            return Outcome(ticket, changed=False)

        now = self.clock()
        updates["lastUpdated"] = now
        comment = Comment(
            message="; ".join(changes),
            timestamp=now,
            author_email=actor.email,
            author_name=actor.display_name,
            author_role=ROLE_USER,
        )
        self._commit(ticket_id, updates, comment)
        logger.info(f"Usuario {actor.email} actualizó el ticket {ticket.ticket_number}: {comment.message}")

        updated = self.tickets.find_by_id(ticket_id) or ticket
        warnings = []
        only_assignment = set(updates) == {"assignedTo", "assignedBy", "lastUpdated"}
        if only_assignment:
            notification = Notification(
                recipients=[updated.email] if updated.email else [],
                subject=f"Your ticket has been assigned (ID: {updated.ticket_number})",
                ticket_number=updated.ticket_number,
                message=f"Ticket assigned to {assignee.name} by {actor.username}.",
                kind=KIND_ASSIGNMENT,
                link=self._link(ticket_id),
            )
        else:
            notification = Notification(
                recipients=updated.notification_recipients(),
                subject=f"Ticket {updated.ticket_number} updated",
                ticket_number=updated.ticket_number,
                message=comment.message,
                kind=KIND_COMMENT,
                link=self._link(ticket_id),
            )
        notify(self.dispatcher, notification, warnings)
        return Outcome(updated, warnings)

    # --- Resolución ---

    def save_resolution(self, ticket_id, actor, resolution, status=None, attachments=None):
        ticket = self._load(ticket_id)
        text = (resolution or "").strip()
        target_status = status or ticket.status

        if status and status not in STATUSES:
            raise TicketValidationError({"status": f"Estado desconocido: {status}"})
        if target_status in TERMINAL_STATUSES and not text:
            raise MissingResolutionError(section=RESOLUTION_SECTION, status=target_status)

        now = self.clock()
        updates = {"resolution": text, "lastUpdated": now}
        if status:
            updates["status"] = status
        if attachments is not None:
            updates["resolutionAttachments"] = list(attachments)

        comment = Comment(
            message=f"Resolution updated by {actor.display_name}:\n{text}",
            timestamp=now,
            author_email=actor.email,
            author_name=actor.display_name,
            author_role=ROLE_RESOLVER,
            attachments=attachments,
        )
        self._commit(ticket_id, updates, comment)
        logger.info(f"Usuario {actor.email} actualizó la resolución del ticket {ticket.ticket_number} (estado: {target_status}).")

        updated = self.tickets.find_by_id(ticket_id) or ticket
        warnings = []
        notify(self.dispatcher, Notification(
            recipients=updated.notification_recipients(),
            subject=f"Resolution updated for ticket {updated.ticket_number}",
            ticket_number=updated.ticket_number,
            message=comment.message,
            kind=KIND_RESOLUTION,
            link=self._link(ticket_id),
        ), warnings)
        return Outcome(updated, warnings)

    # --- Borrado administrativo ---

    def delete_ticket(self, ticket_id, actor=None):
        try:
            deleted = self.tickets.delete(ticket_id)
        except pymongo.errors.PyMongoError as e:
            logger.error(f"Error al borrar el ticket {ticket_id}: {e}", exc_info=True)
            raise DatabaseQueryError(original_exception=e)
        if not deleted:
            raise TicketNotFoundError(ticket_id=ticket_id)
        logger.info(f"Ticket {ticket_id} borrado por {actor.email if actor else 'sistema'}.")

    # --- Auxiliares ---

    def _draw_number(self, category):
        """Número nuevo de la secuencia; su prefijo debe corresponder a la categoría."""
        number = self.sequence.next_ticket_number(category)
        if not prefix_matches(number, category):
            logger.error(f"Número '{number}' con prefijo incorrecto para la categoría '{category}'.")
            raise SequenceGenerationError(
                f"El número '{number}' no corresponde a la categoría '{category}'.", category=category
            )
        return number

    def _load(self, ticket_id):
        try:
            ticket = self.tickets.find_by_id(ticket_id)
        except pymongo.errors.PyMongoError as e:
            logger.error(f"Error al leer el ticket {ticket_id}: {e}", exc_info=True)
            raise DatabaseQueryError(original_exception=e)
        if ticket is None:
            raise TicketNotFoundError(ticket_id=ticket_id)
        return ticket

    def _commit(self, ticket_id, updates, comment):
        try:
            found = self.tickets.update(ticket_id, set_fields=updates, push_comment=comment.to_document())
        except pymongo.errors.PyMongoError as e:
            logger.error(f"Error al guardar cambios del ticket {ticket_id}: {e}", exc_info=True)
            raise DatabaseQueryError(original_exception=e)
        if not found:
            raise TicketNotFoundError(ticket_id=ticket_id)

    def _link(self, ticket_id):
        return f"{self.link_base.rstrip('/')}/{ticket_id}" if self.link_base else None
