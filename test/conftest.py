import pytest
from ticketdesk import create_app, mail, mongo
from ticketdesk.assignment import AssignmentProtocol
from ticketdesk.auth.models import Persona
from ticketdesk.comments import CommentTrail
from ticketdesk.email import NotificationDispatcher
from ticketdesk.lifecycle import TicketLifecycle
from ticketdesk.repositories import MongoCounterRepository, MongoTicketRepository, MongoUserRepository
from ticketdesk.sequence import SequenceGenerator
from flask_login import FlaskLoginClient
from unittest.mock import patch, Mock
from datetime import datetime, timedelta, timezone
import logging
import mongomock

# Desactivar la propagación de logs para evitar duplicados en la consola de pytest
logging.getLogger("werkzeug").setLevel(logging.ERROR)
logging.getLogger("flask_limiter").setLevel(logging.ERROR)

# Instantes con segundos enteros: MongoDB guarda las fechas con precisión de milisegundos.
T0 = datetime(2024, 5, 6, 9, 0, 0, tzinfo=timezone.utc)

EMPLOYEE = {
    "email": "jane@example.com", "firstName": "Jane", "lastName": "Doe",
    "role": "employee", "project": "Alpha",
}
PROJECT_MANAGER = {
    "email": "pm@example.com", "firstName": "Paula", "lastName": "Manager",
    "role": "project_manager", "project": "Alpha",
}
CLIENT = {
    "email": "client@example.com", "firstName": "Carl", "lastName": "Client",
    "role": "client", "project": "Alpha",
}
ADMIN = {
    "email": "admin@example.com", "firstName": "Ada", "lastName": "Admin",
    "role": "admin", "project": None,
}


class FakeClock:
    """Reloj controlable para los servicios (sustituye a utcnow)."""
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


def seed_users(database):
    """Inserta los usuarios de prueba y devuelve sus Persona por rol."""
    personas = {}
    for data in (EMPLOYEE, PROJECT_MANAGER, CLIENT, ADMIN):
        document = dict(data)
        document["_id"] = database.users.insert_one(document).inserted_id
        personas[data["role"]] = Persona.from_document(document)
    return personas


# --- Servicios sobre mongomock, sin aplicación Flask ---

@pytest.fixture(scope="function")
def mongo_db():
    client = mongomock.MongoClient()
    client.drop_database("ticketdesk_unit")
    return client.ticketdesk_unit


@pytest.fixture(scope="function")
def personas(mongo_db):
    return seed_users(mongo_db)


@pytest.fixture(scope="function")
def clock():
    return FakeClock()


@pytest.fixture(scope="function")
def dispatcher():
    return Mock(spec=NotificationDispatcher)


@pytest.fixture(scope="function")
def tickets(mongo_db):
    return MongoTicketRepository(mongo_db)


@pytest.fixture(scope="function")
def users(mongo_db):
    return MongoUserRepository(mongo_db)


@pytest.fixture(scope="function")
def sequence(mongo_db):
    return SequenceGenerator(MongoCounterRepository(mongo_db), max_retries=3)


@pytest.fixture(scope="function")
def lifecycle(tickets, users, sequence, dispatcher, clock):
    return TicketLifecycle(tickets, users, sequence, dispatcher, clock=clock,
                           link_base="http://localhost:4000/tickets")


@pytest.fixture(scope="function")
def assignment(tickets, users, dispatcher, clock):
    return AssignmentProtocol(tickets, users, dispatcher, clock=clock)


@pytest.fixture(scope="function")
def trail(tickets, dispatcher, clock):
    return CommentTrail(tickets, dispatcher, clock=clock)


@pytest.fixture(scope="function")
def ticket_fields():
    return {
        "name": "Carl Client",
        "email": "client@example.com",
        "subject": "No puedo acceder al ERP",
        "description": "La pantalla de login devuelve un error 500.",
        "project": "Alpha",
        "category": "Incident",
        "priority": "High",
    }


@pytest.fixture(scope="function")
def open_ticket(lifecycle, personas, ticket_fields, dispatcher):
    """Ticket recién creado; el mock del despachador queda limpio."""
    outcome = lifecycle.create_ticket(ticket_fields, actor=personas["client"])
    dispatcher.reset_mock()
    return outcome.ticket


# --- Aplicación Flask ---

@pytest.fixture(scope="function")
def app():
    """Crea y configura una instancia de la aplicación Flask para cada test."""
    # Flask-PyMongo crea su cliente con su propia subclase de MongoClient.
    with patch('flask_pymongo.MongoClient', mongomock.MongoClient):
        app = create_app('testing')
        app.test_client_class = FlaskLoginClient
        yield app


@pytest.fixture(scope="function")
def db(app):
    """Fixture que proporciona acceso a la BD y la limpia antes de cada test."""
    with app.app_context():
        database = mongo.db
        database.client.drop_database(database.name)
    yield database


@pytest.fixture(scope="function")
def app_personas(db):
    return seed_users(db)


@pytest.fixture(scope="function")
def client(app):
    """Cliente de prueba sin sesión."""
    return app.test_client()


@pytest.fixture(scope="function")
def login_as(app, app_personas):
    """Devuelve un cliente de prueba con la sesión iniciada para el rol indicado."""
    def _login(role):
        return app.test_client(user=app_personas[role])
    return _login


@pytest.fixture(scope="function")
def outbox(app):
    """Correos despachados por Flask-Mail (MAIL_SUPPRESS_SEND en testing)."""
    with mail.record_messages() as outbox:
        yield outbox
