class BaseAppException(Exception):
    """Clase base para excepciones personalizadas de la aplicación."""
    def __init__(self, message="Error de la aplicación.", original_exception=None):
        super().__init__(message)
        self.message = message
        self.original_exception = original_exception

class DatabaseQueryError(BaseAppException):
    """Excepción para errores ocurridos durante una consulta a la base de datos."""
    def __init__(self, message="Error al ejecutar la consulta en la base de datos.", original_exception=None):
        super().__init__(message, original_exception)

class InvalidDatetimeFormatError(BaseAppException):
    """Excepción para formato de fecha/hora inválido."""
    def __init__(self, message="Formato de fecha y hora inválido.", original_exception=None):
        super().__init__(message, original_exception)

class SequenceGenerationError(BaseAppException):
    """
    No se pudo reservar un número de ticket tras agotar los reintentos.
    Es el único error que aborta la operación completa (alta de ticket).
    """
    def __init__(self, message="No se pudo generar el número de ticket.", original_exception=None, category=None):
        super().__init__(message, original_exception)
        self.category = category

class MissingResolutionError(BaseAppException):
    """Se intentó pasar a Resolved/Closed sin texto de resolución."""
    def __init__(self, message="Please fill the resolution in resolution section", section="Resolution", status=None):
        super().__init__(message)
        self.section = section
        self.status = status

class NotificationDispatchError(BaseAppException):
    """Fallo al enviar una notificación. Nunca deshace la mutación ya confirmada."""
    def __init__(self, message="No se pudo enviar la notificación.", original_exception=None, recipients=None):
        super().__init__(message, original_exception)
        self.recipients = recipients or []

class TicketNotFoundError(BaseAppException):
    """El ticket no existe (o fue borrado mientras se leía)."""
    def __init__(self, message="Ticket no encontrado.", ticket_id=None):
        super().__init__(message)
        self.ticket_id = ticket_id

class CommentNotFoundError(BaseAppException):
    def __init__(self, message="Comentario no encontrado.", index=None):
        super().__init__(message)
        self.index = index

class UnknownResponderError(BaseAppException):
    """El email indicado no corresponde a ningún responsable elegible."""
    def __init__(self, message="Responsable no encontrado.", email=None):
        super().__init__(message)
        self.email = email

class TicketValidationError(BaseAppException):
    """Datos de alta de ticket inválidos. `errors` mapea campo -> mensaje."""
    def __init__(self, errors, message="Datos del ticket inválidos."):
        super().__init__(message)
        self.errors = errors

class DuplicateTicketError(BaseAppException):
    def __init__(self, message="A similar ticket was submitted in the last 24 hours. Please check your email for updates."):
        super().__init__(message)
