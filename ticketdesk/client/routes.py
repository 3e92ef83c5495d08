from flask import jsonify, request, current_app
from flask_login import login_required, current_user
from ticketdesk import limiter
from ticketdesk.client import client_bp
from ticketdesk.services import get_lifecycle, get_ticket_repository
from ticketdesk.utils import encode_upload
from .forms import CreateTicketForm, TicketFilterForm
import logging
import re
import pymongo

logger = logging.getLogger(__name__)


@client_bp.route('/create_ticket', methods=['POST'])
@limiter.limit("10 per minute")
@login_required
def create_ticket():
    form = CreateTicketForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Datos del formulario inválidos.", "errors": form.errors}), 400

    fields = {
        "name": form.name.data or current_user.display_name,
        "email": form.email.data or current_user.email,
        "subject": form.subject.data,
        "description": form.description.data,
        "project": form.project.data or current_user.project or "",
        "category": form.category.data,
        "otherIssue": form.otherIssue.data,
        "module": form.module.data,
        "subCategory": form.subCategory.data,
        "typeOfIssue": form.typeOfIssue.data,
        "priority": form.priority.data,
        "attachments": [encode_upload(f) for f in form.attachments.data or [] if f and f.filename],
    }
    outcome = get_lifecycle().create_ticket(fields, actor=current_user)
    return jsonify(outcome.to_dict()), 201


@client_bp.route('/my_tickets', methods=['GET'])
@login_required
def my_tickets():
    """Tickets abiertos por el usuario o asignados a él, más recientes primero."""
    form = TicketFilterForm(request.args)
    if not form.validate():
        return jsonify({"error": "Filtros inválidos.", "errors": form.errors}), 400

    query = {"$or": [{"email": current_user.email}, {"assignedTo.email": current_user.email}]}
    if form.status.data:
        query["status"] = form.status.data
    if form.priority.data:
        query["priority"] = form.priority.data
    if form.search_subject.data:
        query["subject"] = {"$regex": re.escape(form.search_subject.data), "$options": "i"}

    try:
        tickets = get_ticket_repository().find(query)
        logger.info(f'Usuario {current_user.email} consultó sus tickets. Se encontraron {len(tickets)} tickets.')
    except pymongo.errors.PyMongoError as e:
        current_app.logger.error(f"Error al buscar tickets para {current_user.email}: {e}", exc_info=True)
        return jsonify({"error": "Error al cargar los tickets."}), 500

    return jsonify({"tickets": [t.to_dict() for t in tickets]})
