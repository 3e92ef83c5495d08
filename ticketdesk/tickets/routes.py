from flask import jsonify, abort
from flask_login import login_required, current_user
from ticketdesk.tickets import tickets_bp
from ticketdesk.auth.decorators import responder_required
from ticketdesk.services import get_assignment, get_lifecycle, get_ticket_repository, get_trail
from ticketdesk.utils import encode_upload
from .forms import AssignTicketForm, CommentForm, EditCommentForm, ResolutionForm, TicketDetailsForm
import logging
import pymongo

logger = logging.getLogger(__name__)


def _uploads(field):
    return [encode_upload(f) for f in field.data or [] if f and f.filename]


def _form_errors(form):
    return jsonify({"error": "Datos del formulario inválidos.", "errors": form.errors}), 400


def _load_visible_ticket(ticket_id):
    """Ticket si existe y el usuario actual puede verlo; si no, 404/403."""
    try:
        ticket = get_ticket_repository().find_by_id(ticket_id)
    except pymongo.errors.PyMongoError as e:
        logger.error(f"Error al cargar el ticket {ticket_id}: {e}", exc_info=True)
        abort(500)
    if ticket is None:
        abort(404)
    if not current_user.can_access(ticket):
        logger.warning(f"Usuario {current_user.email} intentó acceder al ticket {ticket.ticket_number} sin permiso.")
        abort(403)
    return ticket


@tickets_bp.route('/<string:ticket_id>', methods=['GET'])
@login_required
def ticket_detail(ticket_id):
    ticket = _load_visible_ticket(ticket_id)
    return jsonify(ticket.to_dict())


@tickets_bp.route('/<string:ticket_id>/details', methods=['POST'])
@responder_required
def update_details(ticket_id):
    form = TicketDetailsForm()
    if not form.validate_on_submit():
        return _form_errors(form)

    outcome = get_lifecycle().update_details(
        ticket_id,
        current_user,
        priority=form.priority.data or None,
        status=form.status.data or None,
        category=(form.category.data or '').strip() or None,
        assignee_email=(form.assignee_email.data or '').strip() or None,
    )
    return jsonify(outcome.to_dict())


@tickets_bp.route('/<string:ticket_id>/resolution', methods=['POST'])
@responder_required
def save_resolution(ticket_id):
    form = ResolutionForm()
    if not form.validate_on_submit():
        return _form_errors(form)

    attachments = _uploads(form.attachments)
    outcome = get_lifecycle().save_resolution(
        ticket_id,
        current_user,
        form.resolution.data,
        status=form.status.data or None,
        attachments=attachments or None,
    )
    return jsonify(outcome.to_dict())


@tickets_bp.route('/<string:ticket_id>/comments', methods=['POST'])
@login_required
def add_comment(ticket_id):
    _load_visible_ticket(ticket_id)
    form = CommentForm()
    if not form.validate_on_submit():
        return _form_errors(form)

    outcome = get_trail().append_comment(ticket_id, current_user, form.message.data, _uploads(form.attachments))
    return jsonify(outcome.to_dict()), 201


@tickets_bp.route('/<string:ticket_id>/comments/<int:index>/edit', methods=['POST'])
@responder_required
def edit_comment(ticket_id, index):
    form = EditCommentForm()
    if not form.validate_on_submit():
        return _form_errors(form)

    outcome = get_trail().edit_comment(ticket_id, index, form.message.data, current_user)
    return jsonify(outcome.to_dict())


@tickets_bp.route('/<string:ticket_id>/assign', methods=['POST'])
@responder_required
def assign_ticket(ticket_id):
    form = AssignTicketForm()
    if not form.validate_on_submit():
        return _form_errors(form)

    outcome = get_assignment().assign(ticket_id, current_user, form.responder_email.data.strip())
    return jsonify(outcome.to_dict())


@tickets_bp.route('/<string:ticket_id>/unassign', methods=['POST'])
@responder_required
def unassign_ticket(ticket_id):
    outcome = get_assignment().unassign(ticket_id, current_user)
    return jsonify(outcome.to_dict())
