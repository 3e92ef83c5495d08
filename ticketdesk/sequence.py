# ticketdesk/sequence.py

import logging
import pymongo
from ticketdesk.exceptions import SequenceGenerationError
from ticketdesk.models import CATEGORY_INCIDENT, CATEGORY_SERVICE, CATEGORY_CHANGE

logger = logging.getLogger(__name__)


class CategorySequence:
    """Prefijo, documento contador y valor inicial de una categoría."""
    def __init__(self, prefix, counter_id, start_value):
        self.prefix = prefix
        self.counter_id = counter_id
        self.start_value = start_value

    def __repr__(self):
        return f"<CategorySequence {self.prefix} {self.counter_id} desde {self.start_value}>"


INCIDENT_SEQUENCE = CategorySequence("IN", "incident_counter", 100000)

CATEGORY_SEQUENCES = {
    CATEGORY_INCIDENT: INCIDENT_SEQUENCE,
    CATEGORY_SERVICE: CategorySequence("SR", "service_counter", 200000),
    CATEGORY_CHANGE: CategorySequence("CR", "change_counter", 300000),
}


def sequence_for(category):
    """Las categorías desconocidas usan la numeración de Incident."""
    return CATEGORY_SEQUENCES.get(category, INCIDENT_SEQUENCE)


def prefix_matches(ticket_number, category):
    return bool(ticket_number) and ticket_number.startswith(sequence_for(category).prefix)


class SequenceGenerator:
    """
    Genera números de ticket únicos y crecientes por categoría.

    El incremento se hace siempre en la base de datos mediante una operación
    atómica; nunca se cachea ni se calcula en el cliente. Los fallos del
    almacén se reintentan un número acotado de veces y, si persisten, se
    lanza SequenceGenerationError (no se salta ningún número en silencio).
    """
    def __init__(self, counters, max_retries=3):
        self.counters = counters
        self.max_retries = max(1, max_retries)

    def next_ticket_number(self, category):
        numbering = sequence_for(category)
        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                value = self.counters.increment(numbering.counter_id, numbering.start_value, category=category)
                number = f"{numbering.prefix}{value}"
                logger.debug(f"Número de ticket reservado: {number} (intento {attempt})")
                return number
            except pymongo.errors.PyMongoError as e:
                last_error = e
                logger.warning(f"Fallo al incrementar el contador '{numbering.counter_id}' (intento {attempt}/{self.max_retries}): {e}")

        logger.error(f"No se pudo generar número de ticket para la categoría '{category}' tras {self.max_retries} intentos.")
        raise SequenceGenerationError(
            f"No se pudo generar el número de ticket para '{category}' tras {self.max_retries} intentos.",
            original_exception=last_error,
            category=category,
        )
