# ticketdesk/utils.py

import base64
import re
from datetime import datetime, date, timezone
from bson.timestamp import Timestamp
from ticketdesk.exceptions import InvalidDatetimeFormatError

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def utcnow():
    return datetime.now(timezone.utc)


def to_datetime(value, strict=False):
    """
    Normaliza cualquier representación de instante que aparece en los tickets
    a un `datetime` con zona UTC.

    Acepta:
      - `datetime` (los naive que devuelve pymongo se interpretan como UTC)
      - `date`
      - `bson.timestamp.Timestamp`
      - diccionarios `{seconds, nanoseconds}` o `{_seconds, _nanoseconds}`
      - cadenas ISO 8601 (incluido el sufijo 'Z')
      - números: milisegundos desde epoch

    Devuelve None si el valor está vacío o no se puede interpretar. Con
    `strict=True` lanza InvalidDatetimeFormatError en lugar de devolver None.
    """
    if value is None or value == "":
        return None

    try:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc)

        if isinstance(value, date):
            return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

        if isinstance(value, Timestamp):
            return value.as_datetime()

        if isinstance(value, dict):
            seconds = value.get("seconds", value.get("_seconds"))
            if seconds is None:
                raise ValueError(f"Diccionario sin segundos: {value}")
            nanos = value.get("nanoseconds", value.get("_nanoseconds")) or 0
            return datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)

        if isinstance(value, bool):
            raise ValueError("Un booleano no es un instante")

        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)

        if isinstance(value, str):
            text = value.strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            parsed = datetime.fromisoformat(text)
            if parsed.tzinfo is None:
                return parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)

        raise ValueError(f"Tipo de fecha no soportado: {type(value).__name__}")
    except (ValueError, TypeError, OverflowError, OSError) as e:
        if strict:
            raise InvalidDatetimeFormatError(original_exception=e)
        return None


def epoch_seconds(value):
    """Clave de ordenación del historial. Los instantes ilegibles valen 0."""
    instant = to_datetime(value)
    if instant is None:
        return 0
    return instant.timestamp()


def duration_ms(start, end):
    """Diferencia en milisegundos; None si falta algún extremo. No se recorta a cero."""
    if start is None or end is None:
        return None
    return (end - start).total_seconds() * 1000


def username_from_email(email):
    if not email:
        return ""
    return email.split("@")[0]


def display_name(first_name=None, last_name=None, email=None):
    name = f"{first_name or ''} {last_name or ''}".strip()
    return name or username_from_email(email)


def is_valid_email(email):
    return bool(email) and bool(EMAIL_RE.match(email))


def to_naive_utc(value):
    """Instante naive en UTC, la forma en que MongoDB guarda y compara fechas."""
    instant = to_datetime(value)
    return instant.replace(tzinfo=None) if instant else None


def encode_upload(storage):
    """Adjunto subido (FileStorage) a {name, type, size, data} con el contenido en base64."""
    raw = storage.read()
    return {
        "name": storage.filename,
        "type": storage.mimetype,
        "size": len(raw),
        "data": base64.b64encode(raw).decode("ascii"),
    }
