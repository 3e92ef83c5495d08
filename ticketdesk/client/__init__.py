from flask import Blueprint

client_bp = Blueprint('client_bp', __name__)

from . import routes
