import logging
import threading
from flask import current_app
from flask_mail import Message
from ticketdesk import mail
from ticketdesk.exceptions import NotificationDispatchError

logger = logging.getLogger(__name__)

KIND_ASSIGNMENT = "assignment"
KIND_COMMENT = "comment"
KIND_RESOLUTION = "resolution"
KIND_CREATION = "creation"
NOTIFICATION_KINDS = (KIND_ASSIGNMENT, KIND_COMMENT, KIND_RESOLUTION, KIND_CREATION)

TICKET_NUMBER_HEADER = "X-Ticket-Number"
NOTIFICATION_KIND_HEADER = "X-Notification-Kind"


class Notification:
    """Carga de una notificación de ticket. Entrega, reintentos y plantillas son externos."""
    def __init__(self, recipients, subject, ticket_number, message, kind, link=None):
        if kind not in NOTIFICATION_KINDS:
            raise ValueError(f"Tipo de notificación desconocido: {kind}")
        self.recipients = list(recipients)
        self.subject = subject
        self.ticket_number = ticket_number
        self.message = message
        self.kind = kind
        self.link = link

    def to_payload(self):
        return {
            "recipients": self.recipients,
            "subject": self.subject,
            "ticketNumber": self.ticket_number,
            "message": self.message,
            "kind": self.kind,
        }

    def __repr__(self):
        return f"<Notification {self.kind} {self.ticket_number} -> {self.recipients}>"


class NotificationDispatcher:
    """Define el contrato del servicio de notificaciones."""
    def dispatch(self, notification):
        raise NotImplementedError


def send_email_async(app, msg):
    """Función auxiliar para enviar correos en un hilo separado."""
    with app.app_context():
        try:
            mail.send(msg)
            app.logger.info(f"Correo '{msg.subject}' enviado exitosamente a {msg.recipients}.")
        except Exception as e:
            app.logger.error(f"Error asíncrono al enviar correo '{msg.subject}' a {msg.recipients}: {str(e)}", exc_info=True)


class MailNotificationDispatcher(NotificationDispatcher):
    """
    Envía las notificaciones con Flask-Mail (configuración MAIL_* de la app).

    En modo síncrono cualquier fallo se convierte en NotificationDispatchError.
    Con MAIL_SEND_ASYNC el envío va a un hilo aparte y los fallos solo quedan
    en el log.
    """
    def build_message(self, notification):
        payload = notification.to_payload()
        body = f"{payload['message']}\n\nTicket: {payload['ticketNumber']}"
        if notification.link:
            body += f"\n{notification.link}"
        return Message(payload["subject"],
                       sender=current_app.config['MAIL_DEFAULT_SENDER'] or current_app.config['MAIL_USERNAME'],
                       recipients=payload["recipients"],
                       body=body,
                       extra_headers={
                           TICKET_NUMBER_HEADER: payload["ticketNumber"],
                           NOTIFICATION_KIND_HEADER: payload["kind"],
                       })

    def dispatch(self, notification):
        if not notification.recipients:
            logger.debug(f"Notificación sin destinatarios para {notification.ticket_number}; se omite.")
            return
        msg = self.build_message(notification)

        if current_app.config.get("MAIL_SEND_ASYNC"):
            threading.Thread(target=send_email_async, args=(current_app._get_current_object(), msg)).start()
            logger.debug(f"Email '{msg.subject}' en cola para: {msg.recipients}")
            return

        try:
            mail.send(msg)
            logger.info(f"Correo '{msg.subject}' enviado exitosamente a {msg.recipients}.")
        except Exception as e:
            logger.error(f"Error al enviar correo '{msg.subject}' a {msg.recipients}: {e}", exc_info=True)
            raise NotificationDispatchError(original_exception=e, recipients=notification.recipients)


def notify(dispatcher, notification, warnings):
    """
    Despacha la notificación después de confirmar la mutación.
    Un fallo nunca se propaga: se registra y se añade a `warnings`.
    """
    try:
        dispatcher.dispatch(notification)
    except NotificationDispatchError as e:
        logger.warning(f"Notificación '{notification.kind}' del ticket {notification.ticket_number} no enviada: {e}")
        warnings.append(f"No se pudo enviar la notificación a {', '.join(notification.recipients)}.")
