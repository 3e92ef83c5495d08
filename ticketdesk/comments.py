import logging
import pymongo
from ticketdesk.email import Notification, KIND_COMMENT, notify
from ticketdesk.exceptions import (
    CommentNotFoundError, DatabaseQueryError, TicketNotFoundError, TicketValidationError
)
from ticketdesk.models import Comment, Outcome, LEGACY_RESPONSE_FIELDS, ROLE_USER
from ticketdesk.utils import epoch_seconds, utcnow

logger = logging.getLogger(__name__)


def normalize_trail(document):
    """
    Devuelve el historial de un documento de ticket como lista de Comment
    ordenada por instante.

    Une `comments` con las listas antiguas `adminResponses` (etiquetadas
    `admin`) y `customerResponses` (etiquetadas `customer`). El orden es
    estable: a igual instante se respeta la posición original. Solo lectura;
    la migración persistente es el comando `migrate-comments`.
    """
    entries = []
    stored = document.get("comments")
    if isinstance(stored, list):
        entries.extend(
            Comment.from_document(c, source=("comments", i))
            for i, c in enumerate(stored) if isinstance(c, dict)
        )
    for field, role in LEGACY_RESPONSE_FIELDS:
        legacy = document.get(field)
        if isinstance(legacy, list):
            entries.extend(
                Comment.from_document(r, source=(field, i), role_override=role)
                for i, r in enumerate(legacy) if isinstance(r, dict)
            )
    return sorted(entries, key=lambda c: epoch_seconds(c.timestamp))


class CommentTrail:
    """Historial de comentarios de un ticket: alta (solo añadir) y edición con procedencia."""
    def __init__(self, tickets, dispatcher, clock=utcnow, link_base=None):
        self.tickets = tickets
        self.dispatcher = dispatcher
        self.clock = clock
        self.link_base = link_base

    def _load(self, ticket_id):
        try:
            document = self.tickets.find_document(ticket_id)
        except pymongo.errors.PyMongoError as e:
            logger.error(f"Error al leer el ticket {ticket_id}: {e}", exc_info=True)
            raise DatabaseQueryError(original_exception=e)
        if not document:
            raise TicketNotFoundError(ticket_id=ticket_id)
        return document

    def append_comment(self, ticket_id, actor, message, attachments=None):
        if not message or not message.strip():
            raise TicketValidationError({"message": "El comentario no puede estar vacío."})

        document = self._load(ticket_id)
        now = self.clock()
        comment = Comment(
            message=message.strip(),
            timestamp=now,
            author_email=actor.email,
            author_name=actor.display_name,
            author_role=ROLE_USER,
            attachments=attachments,
        )
        try:
            found = self.tickets.update(ticket_id, set_fields={"lastUpdated": now}, push_comment=comment.to_document())
        except pymongo.errors.PyMongoError as e:
            logger.error(f"Error al añadir comentario al ticket {ticket_id}: {e}", exc_info=True)
            raise DatabaseQueryError(original_exception=e)
        if not found:
            raise TicketNotFoundError(ticket_id=ticket_id)

        logger.info(f"Usuario {actor.email} comentó en el ticket {document.get('ticketNumber')}.")

        ticket = self.tickets.find_by_id(ticket_id)
        warnings = []
        if ticket:
            notify(self.dispatcher, Notification(
                recipients=ticket.notification_recipients(),
                subject=f"New comment on ticket {ticket.ticket_number}",
                ticket_number=ticket.ticket_number,
                message=f"{actor.display_name} commented:\n{comment.message}",
                kind=KIND_COMMENT,
                link=self._link(ticket_id),
            ), warnings)
        return Outcome(ticket, warnings)

    def edit_comment(self, ticket_id, index, new_message, actor):
        """
        Reescribe el mensaje de la entrada `index` del historial ordenado.
        Autor, email e instante originales no cambian; se registran
        `lastEditedAt` y `lastEditedBy`.
        """
        if not new_message or not new_message.strip():
            raise TicketValidationError({"message": "El comentario no puede estar vacío."})

        document = self._load(ticket_id)
        trail = normalize_trail(document)
        if index < 0 or index >= len(trail):
            raise CommentNotFoundError(index=index)

        # Las listas solo crecen por el final, así que la posición sigue siendo válida.
        field, position = trail[index].source
        prefix = f"{field}.{position}"
        now = self.clock()
        try:
            found = self.tickets.update(ticket_id, set_fields={
                f"{prefix}.message": new_message.strip(),
                f"{prefix}.lastEditedAt": now,
                f"{prefix}.lastEditedBy": actor.display_name,
            })
        except pymongo.errors.PyMongoError as e:
            logger.error(f"Error al editar el comentario {index} del ticket {ticket_id}: {e}", exc_info=True)
            raise DatabaseQueryError(original_exception=e)
        if not found:
            raise TicketNotFoundError(ticket_id=ticket_id)

        logger.info(f"Usuario {actor.email} editó el comentario {index} del ticket {document.get('ticketNumber')}.")
        return Outcome(self.tickets.find_by_id(ticket_id))

    def _link(self, ticket_id):
        return f"{self.link_base.rstrip('/')}/{ticket_id}" if self.link_base else None


def migrate_legacy_trail(collection):
    """
    Migración explícita: escribe el historial normalizado en `comments` y
    elimina las listas antiguas. Devuelve el número de tickets migrados.
    """
    legacy_fields = [field for field, _ in LEGACY_RESPONSE_FIELDS]
    query = {"$or": [{field: {"$exists": True}} for field in legacy_fields]}
    migrated = 0
    for document in collection.find(query):
        trail = [c.to_document() for c in normalize_trail(document)]
        collection.update_one(
            {"_id": document["_id"]},
            {"$set": {"comments": trail}, "$unset": {field: "" for field in legacy_fields}},
        )
        migrated += 1
    return migrated
