import logging
import pymongo
from bson.objectid import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from ticketdesk.models import Ticket

logger = logging.getLogger(__name__)

RESPONDER_ROLES = ["employee", "project_manager"]


def to_object_id(value):
    """Convierte un id en ObjectId; None si no es un id válido."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None

# -----------------------------------------------
# INTERFACES DE REPOSITORIO
# -----------------------------------------------

class TicketRepository:
    """Define el contrato para operaciones de datos de tickets."""
    def insert(self, document):
        raise NotImplementedError

    def find_document(self, ticket_id):
        raise NotImplementedError

    def find_by_id(self, ticket_id):
        raise NotImplementedError

    def update(self, ticket_id, set_fields=None, push_comment=None, unset_fields=None):
        raise NotImplementedError

    def delete(self, ticket_id):
        raise NotImplementedError

    def find_recent_duplicate(self, email, subject, since):
        raise NotImplementedError

    def find(self, query=None):
        raise NotImplementedError


class CounterRepository:
    """Define el contrato para los contadores de numeración por categoría."""
    def increment(self, counter_id, start_value, category=None):
        raise NotImplementedError

    def current_value(self, counter_id):
        raise NotImplementedError


class UserRepository:
    """Directorio de usuarios: identidad de responsables y miembros de proyecto."""
    def find_by_id(self, user_id):
        raise NotImplementedError

    def find_responder(self, email, project=None):
        raise NotImplementedError

    def find_project_member_emails(self, project):
        raise NotImplementedError


class KpiReportRepository:
    def add(self, report):
        raise NotImplementedError

# -----------------------------------------------
# IMPLEMENTACIONES MONGODB
# -----------------------------------------------

class MongoTicketRepository(TicketRepository):
    """Implementación concreta del repositorio de tickets para PyMongo."""
    def __init__(self, db):
        self.collection = db.tickets

    def insert(self, document):
        result = self.collection.insert_one(document)
        return str(result.inserted_id)

    def find_document(self, ticket_id):
        oid = to_object_id(ticket_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def find_by_id(self, ticket_id):
        document = self.find_document(ticket_id)
        return Ticket.from_document(document) if document else None

    def update(self, ticket_id, set_fields=None, push_comment=None, unset_fields=None):
        """
        Aplica todos los cambios en una única operación sobre el documento,
        de modo que un fallo no deja actualizaciones parciales.
        Devuelve False si el ticket ya no existe.
        """
        oid = to_object_id(ticket_id)
        if oid is None:
            return False
        update = {}
        if set_fields:
            update["$set"] = set_fields
        if push_comment is not None:
            update["$push"] = {"comments": push_comment}
        if unset_fields:
            update["$unset"] = {field: "" for field in unset_fields}
        if not update:
            return True
        result = self.collection.update_one({"_id": oid}, update)
        return result.matched_count == 1

    def delete(self, ticket_id):
        oid = to_object_id(ticket_id)
        if oid is None:
            return False
        return self.collection.delete_one({"_id": oid}).deleted_count == 1

    def find_recent_duplicate(self, email, subject, since):
        return self.collection.find_one({"email": email, "subject": subject, "created": {"$gte": since}})

    def find(self, query=None):
        documents = self.collection.find(query or {}).sort("created", pymongo.DESCENDING)
        return [Ticket.from_document(d) for d in documents]


class MongoCounterRepository(CounterRepository):
    """Un documento por categoría en la colección `counters`: {_id, value}."""
    def __init__(self, db):
        self.collection = db.counters

    def increment(self, counter_id, start_value, category=None):
        # Crear el contador si no existe; no toca el valor de uno existente.
        self.collection.update_one(
            {"_id": counter_id},
            {"$setOnInsert": {"value": start_value - 1, "category": category, "startValue": start_value}},
            upsert=True,
        )
        # $inc es atómico: dos llamadas concurrentes nunca obtienen el mismo valor.
        document = self.collection.find_one_and_update(
            {"_id": counter_id},
            {"$inc": {"value": 1}},
            return_document=ReturnDocument.AFTER,
        )
        return document["value"]

    def current_value(self, counter_id):
        document = self.collection.find_one({"_id": counter_id})
        return document["value"] if document else None


class MongoUserRepository(UserRepository):
    """Implementación concreta del directorio de usuarios (colección `users`)."""
    def __init__(self, db):
        self.collection = db.users

    def find_by_id(self, user_id):
        oid = to_object_id(user_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def find_responder(self, email, project=None):
        """
        Resuelve un email a la terna {name, email, role} de un responsable
        elegible (empleado o jefe de proyecto, del proyecto si se indica).
        """
        query = {"email": email, "role": {"$in": RESPONDER_ROLES}}
        if project:
            query["project"] = project
        user = self.collection.find_one(query)
        if not user:
            return None
        name = f"{user.get('firstName') or ''} {user.get('lastName') or ''}".strip()
        return {"name": name or email.split("@")[0], "email": user["email"], "role": user.get("role")}

    def find_project_member_emails(self, project):
        if not project:
            return []
        return [u["email"] for u in self.collection.find({"project": project}, {"email": 1}) if u.get("email")]


class MongoKpiReportRepository(KpiReportRepository):
    def __init__(self, db):
        self.collection = db.kpi_reports

    def add(self, report):
        return str(self.collection.insert_one(report).inserted_id)
