# ticketdesk/auth/decorators.py

from functools import wraps
from flask import abort
from flask_login import current_user, login_required
from ticketdesk.auth.models import ROLE_ADMIN, RESPONDER_ROLES, KPI_ROLES
import logging

logger = logging.getLogger(__name__)


# Decorador general para requerir uno o varios roles
def role_required(roles):
    """
    Decorador que verifica si el usuario actual tiene alguno de los roles especificados.

    Uso:
    @role_required('admin')
    @role_required(['admin', 'project_manager'])
    """

    def decorator(f):
        @wraps(f)
        @login_required  # Asegura que el usuario esté logueado antes de comprobar el rol
        def decorated_function(*args, **kwargs):
            # Convertir 'roles' a una lista si se pasó un solo rol como cadena
            if isinstance(roles, str):
                allowed_roles = [roles]
            else:
                allowed_roles = roles

            if current_user.role not in allowed_roles:
                logger.warning(f'Acceso denegado a {current_user.email} (rol "{current_user.role}").')
                abort(403)  # HTTP 403 Forbidden
            return f(*args, **kwargs)

        return decorated_function

    return decorator


def admin_required(f):
    """Solo permite acceso a usuarios con el rol 'admin'."""
    return role_required(ROLE_ADMIN)(f)


def responder_required(f):
    """Admin, jefe de proyecto, empleado o responsable del cliente."""
    return role_required(RESPONDER_ROLES)(f)


def kpi_viewer_required(f):
    """Permite acceso a los informes de KPI."""
    return role_required(KPI_ROLES)(f)
