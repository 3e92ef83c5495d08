# ticketdesk/__init__.py

from flask import Flask, jsonify, current_app
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager
from flask_mail import Mail
from flask_pymongo import PyMongo
from flask_wtf.csrf import CSRFProtect
from pymongo.errors import ConnectionFailure, ConfigurationError
import logging
from logging.handlers import RotatingFileHandler
from config import DevelopmentConfig, ProductionConfig, TestingConfig
from ticketdesk.exceptions import (
    BaseAppException, CommentNotFoundError, DuplicateTicketError, InvalidDatetimeFormatError,
    MissingResolutionError, SequenceGenerationError, TicketNotFoundError, TicketValidationError,
    UnknownResponderError
)
import os
import sys

# --- Instancias de Extensiones ---
login_manager = LoginManager()
mail = Mail()
mongo = PyMongo()
csrf = CSRFProtect()
limiter = Limiter(key_func=get_remote_address)


# --- Funciones Auxiliares para Modularizar la Configuración ---

def init_app_extensions(app):
    """
    Inicializa las extensiones de Flask, la conexión a la BD y el servicio
    de notificaciones.
    """
    from ticketdesk.email import MailNotificationDispatcher

    mail.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    mongo_uri = app.config.get("MONGO_URI")
    if not mongo_uri:
        raise RuntimeError("FATAL: La variable de entorno MONGO_URI no está configurada.")

    app.logger.info("Intentando conectar a MongoDB...")

    try:
        mongo.init_app(app)
        mongo.cx.server_info()  # Fuerza la conexión para verificarla
        app.logger.info("Conexión a MongoDB establecida exitosamente.")
    except (ConnectionFailure, ConfigurationError) as e:
        app.logger.error(f"Error al conectar o configurar MongoDB: {e}")
        raise RuntimeError(f"No se pudo conectar a la base de datos: {e}")

    app.extensions["notifier"] = MailNotificationDispatcher()

    login_manager.init_app(app)
    login_manager.login_message = "Por favor, inicia sesión para acceder a esta página."
    login_manager.login_message_category = "warning"

    from ticketdesk.auth.models import Persona
    from ticketdesk.repositories import MongoUserRepository

    @login_manager.user_loader
    def load_user(user_id):
        user_data = MongoUserRepository(mongo.db).find_by_id(user_id)
        if user_data:
            return Persona.from_document(user_data)
        return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Autenticación requerida."}), 401


def register_app_blueprints(app):
    """
    Registra todos los Blueprints de la aplicación.
    """
    from ticketdesk.tickets import tickets_bp
    app.register_blueprint(tickets_bp, url_prefix='/tickets')

    from ticketdesk.client import client_bp
    app.register_blueprint(client_bp)

    from ticketdesk.admin import admin_bp
    app.register_blueprint(admin_bp, url_prefix='/admin')


def configure_app_logging(app):
    """
    Configura el sistema de logging de la aplicación.
    """
    log_dir = app.config.get("LOG_DIR", "logs")
    if not os.path.exists(log_dir):
        os.mkdir(log_dir)

    for handler in app.logger.handlers[:]:
        app.logger.removeHandler(handler)

    file_handler = RotatingFileHandler(os.path.join(log_dir, "app.log"), maxBytes=10240, backupCount=10)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'))

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))

    if not app.debug and not app.testing:
        level = logging.INFO
    else:
        level = logging.DEBUG
    file_handler.setLevel(level)
    stream_handler.setLevel(level)
    app.logger.setLevel(level)

    # app.logger es el logger "ticketdesk": los módulos del paquete
    # (logging.getLogger(__name__)) propagan hacia estos handlers.
    app.logger.addHandler(file_handler)
    app.logger.addHandler(stream_handler)
    app.logger.info("Logging inicializado")


def register_app_error_handlers(app):
    """
    Registra los manejadores de errores HTTP globales (respuestas JSON).
    """
    @app.errorhandler(400)
    def bad_request_error(error):
        return jsonify({"error": "Solicitud incorrecta."}), 400

    @app.errorhandler(403)
    def forbidden_access(error):
        return jsonify({"error": "No tienes permiso para realizar esta acción."}), 403

    @app.errorhandler(404)
    def page_not_found_error(error):
        return jsonify({"error": "Recurso no encontrado."}), 404

    @app.errorhandler(429)
    def too_many_requests(error):
        return jsonify({"error": "Demasiadas solicitudes. Inténtalo más tarde."}), 429

    @app.errorhandler(500)
    def internal_server_error(error):
        current_app.logger.error(f"Internal Server Error: {error}", exc_info=True)
        return jsonify({"error": "Error interno del servidor."}), 500

    @app.errorhandler(BaseAppException)
    def application_error(error):
        status = error_status(error)
        if status >= 500:
            current_app.logger.error(f"{type(error).__name__}: {error.message}", exc_info=error.original_exception)
        return jsonify(error_payload(error)), status


def error_status(error):
    """Código HTTP de cada error de la aplicación."""
    if isinstance(error, (TicketValidationError, UnknownResponderError, InvalidDatetimeFormatError)):
        return 400
    if isinstance(error, (TicketNotFoundError, CommentNotFoundError)):
        return 404
    if isinstance(error, (MissingResolutionError, DuplicateTicketError)):
        return 409
    if isinstance(error, SequenceGenerationError):
        return 503
    return 500


def error_payload(error):
    payload = {"error": error.message}
    if isinstance(error, TicketValidationError):
        payload["errors"] = error.errors
    if isinstance(error, MissingResolutionError):
        payload["section"] = error.section
    return payload


# --- Función de Fábrica de Aplicación (create_app) ---
def create_app(config_class="development"):
    """
    Función de fábrica para crear y configurar la instancia de la aplicación Flask.
    """
    app = Flask(__name__)

    config_map = {
        'testing': TestingConfig,
        'production': ProductionConfig,
        'development': DevelopmentConfig
    }
    app.config.from_object(config_map.get(config_class, DevelopmentConfig))

    configure_app_logging(app)
    init_app_extensions(app)
    register_app_blueprints(app)
    register_app_error_handlers(app)

    from ticketdesk import commands
    app.cli.add_command(commands.init_db_data_command)
    app.cli.add_command(commands.migrate_comments_command)

    return app
