# ticketdesk/models.py
#
# Con PyMongo los datos viajan como diccionarios (documentos de MongoDB).
# Estas clases dan una estructura clara a esos documentos: se construyen con
# `from_document` y se vuelven a convertir con `to_document` / `to_dict`.

from ticketdesk.utils import to_datetime

STATUS_OPEN = "Open"
STATUS_ON_HOLD = "On Hold"
STATUS_IN_PROGRESS = "In Progress"
STATUS_RESOLVED = "Resolved"
STATUS_CLOSED = "Closed"

STATUSES = [STATUS_OPEN, STATUS_ON_HOLD, STATUS_IN_PROGRESS, STATUS_RESOLVED, STATUS_CLOSED]
# Estados que exigen texto de resolución
TERMINAL_STATUSES = {STATUS_RESOLVED, STATUS_CLOSED}

PRIORITIES = ["Low", "Medium", "High", "Critical"]
DEFAULT_PRIORITY = "Medium"

CATEGORY_INCIDENT = "Incident"
CATEGORY_SERVICE = "Service request"
CATEGORY_CHANGE = "Change request"
CATEGORIES = [CATEGORY_INCIDENT, CATEGORY_SERVICE, CATEGORY_CHANGE]

ROLE_USER = "user"
ROLE_SYSTEM = "system"
ROLE_RESOLVER = "resolver"
ROLE_ADMIN = "admin"
ROLE_CUSTOMER = "customer"

# Listas de respuestas anteriores al campo unificado `comments`
LEGACY_RESPONSE_FIELDS = (("adminResponses", ROLE_ADMIN), ("customerResponses", ROLE_CUSTOMER))


def _isoformat(value):
    instant = to_datetime(value)
    return instant.isoformat() if instant else None


class Assignee:
    """Responsable asignado a un ticket: {name, email, role}."""
    def __init__(self, name, email, role=None):
        self.name = name
        self.email = email
        self.role = role

    @classmethod
    def from_document(cls, document):
        if not document or not document.get("email"):
            return None
        return cls(name=document.get("name") or document["email"].split("@")[0],
                   email=document["email"],
                   role=document.get("role"))

    def to_document(self):
        return {"name": self.name, "email": self.email, "role": self.role}

    def __eq__(self, other):
        return isinstance(other, Assignee) and self.to_document() == other.to_document()

    def __repr__(self):
        return f"<Assignee {self.name} <{self.email}> ({self.role})>"


class Comment:
    """
    Entrada del historial de un ticket.

    `source` indica dónde vive la entrada dentro del documento
    (`("comments", 3)`, `("adminResponses", 0)`...). No se persiste; permite
    editar una entrada sin reescribir el historial completo.
    """
    def __init__(self, message, timestamp, author_email=None, author_name=None, author_role=ROLE_USER,
                 attachments=None, last_edited_at=None, last_edited_by=None, source=None):
        self.message = message
        self.timestamp = timestamp
        self.author_email = author_email
        self.author_name = author_name
        self.author_role = author_role
        self.attachments = attachments or []
        self.last_edited_at = last_edited_at
        self.last_edited_by = last_edited_by
        self.source = source

    @classmethod
    def from_document(cls, document, source=None, role_override=None):
        return cls(
            message=document.get("message", ""),
            timestamp=document.get("timestamp"),
            author_email=document.get("authorEmail"),
            author_name=document.get("authorName"),
            author_role=role_override or document.get("authorRole"),
            attachments=document.get("attachments"),
            last_edited_at=document.get("lastEditedAt"),
            last_edited_by=document.get("lastEditedBy"),
            source=source,
        )

    @property
    def edited(self):
        return self.last_edited_at is not None

    def to_document(self):
        document = {
            "message": self.message,
            "timestamp": self.timestamp,
            "authorEmail": self.author_email,
            "authorName": self.author_name,
            "authorRole": self.author_role,
        }
        if self.attachments:
            document["attachments"] = self.attachments
        if self.last_edited_at is not None:
            document["lastEditedAt"] = self.last_edited_at
            document["lastEditedBy"] = self.last_edited_by
        return document

    def to_dict(self):
        data = self.to_document()
        data["timestamp"] = _isoformat(self.timestamp)
        data["edited"] = self.edited
        if self.edited:
            data["lastEditedAt"] = _isoformat(self.last_edited_at)
        return data

    def __repr__(self):
        return f"<Comment {self.author_role} {self.timestamp!r}: {self.message[:30]!r}>"


class Ticket:
    """Representación de un ticket de soporte."""
    def __init__(self, _id=None, ticketNumber=None, subject="", description="", customer=None, email=None,
                 project=None, category=None, module=None, subCategory=None, typeOfIssue=None,
                 priority=DEFAULT_PRIORITY, status=STATUS_OPEN, resolution="", resolutionAttachments=None,
                 assignedTo=None, assignedBy=None, created=None, lastUpdated=None, attachments=None,
                 comments=None, userId=None, starred=False, **kwargs):
        self.id = str(_id) if _id else None
        self.ticket_number = ticketNumber
        self.subject = subject
        self.description = description
        self.customer = customer
        self.email = email
        self.project = project
        self.category = category
        self.module = module
        self.sub_category = subCategory
        self.type_of_issue = typeOfIssue
        self.priority = priority
        self.status = status
        self.resolution = resolution or ""
        self.resolution_attachments = resolutionAttachments or []
        self.assigned_to = Assignee.from_document(assignedTo) if isinstance(assignedTo, dict) else assignedTo
        self.assigned_by = assignedBy
        self.created = created
        self.last_updated = lastUpdated
        self.attachments = attachments or []
        self.comments = comments or []
        self.user_id = userId
        self.starred = starred

    @classmethod
    def from_document(cls, document):
        """Construye el ticket normalizando el historial (sin escribir nada en la BD)."""
        from ticketdesk.comments import normalize_trail

        data = {k: v for k, v in document.items() if k not in ("comments",) + tuple(f for f, _ in LEGACY_RESPONSE_FIELDS)}
        return cls(comments=normalize_trail(document), **data)

    @property
    def assignee_email(self):
        return self.assigned_to.email if self.assigned_to else None

    def notification_recipients(self):
        """Solicitante y, si es distinto, el responsable asignado."""
        recipients = []
        if self.email:
            recipients.append(self.email)
        if self.assignee_email and self.assignee_email not in recipients:
            recipients.append(self.assignee_email)
        return recipients

    def to_dict(self):
        return {
            "id": self.id,
            "ticketNumber": self.ticket_number,
            "subject": self.subject,
            "description": self.description,
            "customer": self.customer,
            "email": self.email,
            "project": self.project,
            "category": self.category,
            "module": self.module,
            "subCategory": self.sub_category,
            "typeOfIssue": self.type_of_issue,
            "priority": self.priority,
            "status": self.status,
            "resolution": self.resolution,
            "resolutionAttachments": self.resolution_attachments,
            "assignedTo": self.assigned_to.to_document() if self.assigned_to else None,
            "assignedBy": self.assigned_by,
            "created": _isoformat(self.created),
            "lastUpdated": _isoformat(self.last_updated),
            "attachments": [{k: a.get(k) for k in ("name", "type", "size")} for a in self.attachments],
            "comments": [c.to_dict() for c in self.comments],
            "starred": self.starred,
        }

    def __repr__(self):
        return f"<Ticket {self.ticket_number} ({self.status})>"


class Outcome:
    """Resultado de una operación sobre un ticket: el ticket y los avisos no fatales."""
    def __init__(self, ticket=None, warnings=None, changed=True):
        self.ticket = ticket
        self.warnings = warnings or []
        self.changed = changed

    def to_dict(self):
        return {
            "ticket": self.ticket.to_dict() if self.ticket else None,
            "warnings": self.warnings,
            "changed": self.changed,
        }
