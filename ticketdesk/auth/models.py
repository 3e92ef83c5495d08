# ticketdesk/auth/models.py
#
# Usuario de sesión de Flask-Login, construido a partir de un documento de
# la colección `users`. El inicio de sesión lo gestiona un proveedor externo.

from flask_login import UserMixin
from ticketdesk.utils import display_name, username_from_email

ROLE_ADMIN = "admin"
ROLE_CLIENT = "client"
ROLE_CLIENT_HEAD = "client_head"
ROLE_EMPLOYEE = "employee"
ROLE_PROJECT_MANAGER = "project_manager"

ROLES = [ROLE_ADMIN, ROLE_CLIENT, ROLE_CLIENT_HEAD, ROLE_EMPLOYEE, ROLE_PROJECT_MANAGER]
# Pueden modificar tickets (estado, prioridad, asignación, resolución)
RESPONDER_ROLES = [ROLE_ADMIN, ROLE_PROJECT_MANAGER, ROLE_EMPLOYEE, ROLE_CLIENT_HEAD]
KPI_ROLES = [ROLE_ADMIN, ROLE_PROJECT_MANAGER, ROLE_CLIENT_HEAD]


class Persona(UserMixin):
    def __init__(self, email, role=ROLE_CLIENT, firstName="", lastName="", project=None, _id=None, **kwargs):
        self.email = email
        self.first_name = firstName
        self.last_name = lastName
        self.role = role
        self.project = project

        # Flask-Login requiere que el atributo 'id' sea un string.
        self.id = str(_id) if _id else None

    @classmethod
    def from_document(cls, document):
        return cls(**document)

    # get_id es requerido por Flask-Login
    def get_id(self):
        return self.id

    @property
    def username(self):
        return username_from_email(self.email)

    @property
    def display_name(self):
        return display_name(self.first_name, self.last_name, self.email)

    # --- MÉTODOS DE PROPIEDAD PARA ROLES ---
    @property
    def is_admin(self):
        return self.role == ROLE_ADMIN

    @property
    def is_responder(self):
        return self.role in RESPONDER_ROLES

    def can_access(self, ticket):
        """Los responsables ven todo; el resto, solo lo que abrió o tiene asignado."""
        if self.is_responder:
            return True
        return self.email in (ticket.email, ticket.assignee_email)

    def __repr__(self):
        return f"<Persona {self.display_name} <{self.email}> (Rol: {self.role})>"
