import pytest
import pymongo
from unittest.mock import Mock
from ticketdesk.email import KIND_ASSIGNMENT, KIND_COMMENT, KIND_CREATION, KIND_RESOLUTION
from ticketdesk.exceptions import (
    DatabaseQueryError, DuplicateTicketError, MissingResolutionError, NotificationDispatchError,
    SequenceGenerationError, TicketNotFoundError, TicketValidationError, UnknownResponderError
)
from ticketdesk.lifecycle import check_transition, validate_submission


def _sent(dispatcher):
    return [call.args[0] for call in dispatcher.dispatch.call_args_list]


# --- Alta ---

def test_create_ticket_persists_record(lifecycle, personas, ticket_fields, dispatcher, tickets, clock):
    """
    GIVEN a valid submission
    WHEN the ticket is created
    THEN it is stored Open with a category-prefixed number and project members are notified
    """
    outcome = lifecycle.create_ticket(ticket_fields, actor=personas["client"])
    ticket = outcome.ticket

    assert ticket.ticket_number == "IN100000"
    assert ticket.status == "Open"
    assert ticket.priority == "High"
    assert ticket.resolution == ""
    assert ticket.comments == []
    assert ticket.user_id == personas["client"].id
    assert ticket.customer == "Carl Client"

    document = tickets.find_document(ticket.id)
    assert document["starred"] is False
    assert document["assignedTo"] is None

    notification = _sent(dispatcher)[0]
    assert notification.kind == KIND_CREATION
    assert notification.subject == " # IN100000 - No puedo acceder al ERP"
    assert set(notification.recipients) == {"jane@example.com", "pm@example.com", "client@example.com"}


def test_create_ticket_defaults_priority_and_replaces_others(lifecycle, ticket_fields):
    fields = dict(ticket_fields, priority=None, category="Others", otherIssue="Licencias")
    ticket = lifecycle.create_ticket(fields).ticket
    assert ticket.priority == "Medium"
    assert ticket.category == "Licencias"
    assert ticket.ticket_number.startswith("IN")


def test_create_ticket_rejects_invalid_fields(lifecycle, ticket_fields, tickets):
    fields = dict(ticket_fields, email="no-es-un-email", description="corta", subject=" ")
    with pytest.raises(TicketValidationError) as excinfo:
        lifecycle.create_ticket(fields)

    assert excinfo.value.errors == {
        "email": "Invalid email format",
        "subject": "Subject is required",
        "description": "Description must be at least 10 characters",
    }
    assert tickets.find() == []


def test_validate_submission_rejects_large_attachment():
    fields = {
        "name": "Carl", "email": "c@example.com", "subject": "Asunto",
        "description": "Descripción suficientemente larga",
        "attachments": [{"name": "log.txt", "size": 2 * 1024 * 1024}],
    }
    errors = validate_submission(fields, 1024 * 1024)
    assert errors == {"attachments": "Each attachment must be less than 1MB."}


def test_duplicate_within_window_is_rejected(lifecycle, ticket_fields, clock):
    lifecycle.create_ticket(ticket_fields)
    clock.advance(hours=23)
    with pytest.raises(DuplicateTicketError):
        lifecycle.create_ticket(ticket_fields)


def test_duplicate_after_window_is_accepted(lifecycle, ticket_fields, clock):
    lifecycle.create_ticket(ticket_fields)
    clock.advance(hours=25)
    assert lifecycle.create_ticket(ticket_fields).ticket.ticket_number == "IN100001"


def test_sequence_failure_persists_nothing(tickets, users, dispatcher, clock, ticket_fields):
    """
    GIVEN a sequence generator that cannot draw a number
    WHEN a ticket is submitted
    THEN creation aborts and no ticket record is written
    """
    from ticketdesk.lifecycle import TicketLifecycle

    sequence = Mock()
    sequence.next_ticket_number.side_effect = SequenceGenerationError(category="Incident")
    lifecycle = TicketLifecycle(tickets, users, sequence, dispatcher, clock=clock)

    with pytest.raises(SequenceGenerationError):
        lifecycle.create_ticket(ticket_fields)
    assert tickets.find() == []
    dispatcher.dispatch.assert_not_called()


def test_number_with_wrong_prefix_persists_nothing(tickets, users, dispatcher, clock, ticket_fields):
    """
    GIVEN a sequence that hands out a number from another category
    WHEN a Service request is submitted
    THEN creation aborts and no ticket record is written
    """
    from ticketdesk.lifecycle import TicketLifecycle

    sequence = Mock()
    sequence.next_ticket_number.return_value = "IN100000"
    lifecycle = TicketLifecycle(tickets, users, sequence, dispatcher, clock=clock)

    with pytest.raises(SequenceGenerationError) as excinfo:
        lifecycle.create_ticket(dict(ticket_fields, category="Service request"))
    assert excinfo.value.category == "Service request"
    assert tickets.find() == []
    dispatcher.dispatch.assert_not_called()


def test_renumbering_with_wrong_prefix_leaves_ticket_unchanged(tickets, users, dispatcher, clock, open_ticket, personas):
    from ticketdesk.lifecycle import TicketLifecycle

    sequence = Mock()
    sequence.next_ticket_number.return_value = "IN100001"
    lifecycle = TicketLifecycle(tickets, users, sequence, dispatcher, clock=clock)

    with pytest.raises(SequenceGenerationError):
        lifecycle.update_details(open_ticket.id, personas["employee"], category="Change request")

    stored = tickets.find_by_id(open_ticket.id)
    assert stored.ticket_number == "IN100000"
    assert stored.category == "Incident"
    assert stored.comments == []


def test_notification_failure_is_a_warning(lifecycle, ticket_fields, dispatcher, tickets):
    dispatcher.dispatch.side_effect = NotificationDispatchError()
    outcome = lifecycle.create_ticket(ticket_fields)

    assert len(outcome.warnings) == 1
    assert tickets.find_by_id(outcome.ticket.id) is not None


# --- Guarda de transición ---

@pytest.mark.parametrize("status", ["Resolved", "Closed"])
def test_terminal_status_requires_resolution(lifecycle, open_ticket, personas, tickets, dispatcher, status):
    """
    GIVEN a ticket without resolution text
    WHEN a responder moves it to a terminal status
    THEN the change is rejected pointing at the Resolution section and nothing changes
    """
    with pytest.raises(MissingResolutionError) as excinfo:
        lifecycle.update_details(open_ticket.id, personas["employee"], status=status)

    assert excinfo.value.section == "Resolution"
    ticket = tickets.find_by_id(open_ticket.id)
    assert ticket.status == "Open"
    assert ticket.comments == []
    dispatcher.dispatch.assert_not_called()


def test_check_transition_allows_free_graph():
    check_transition("Closed", "Open", "")
    check_transition("Open", "On Hold", "")
    check_transition("On Hold", "Resolved", "Reiniciado el servicio")
    with pytest.raises(TicketValidationError):
        check_transition("Open", "Archived", "")


def test_status_change_after_resolution(lifecycle, open_ticket, personas, clock):
    lifecycle.save_resolution(open_ticket.id, personas["employee"], "Reiniciado el servicio")
    clock.advance(minutes=5)
    ticket = lifecycle.update_details(open_ticket.id, personas["employee"], status="Closed").ticket
    assert ticket.status == "Closed"


# --- Cambios de detalle ---

def test_update_details_writes_one_combined_comment(lifecycle, open_ticket, personas, dispatcher, clock):
    """
    GIVEN an open ticket
    WHEN priority and status change together
    THEN exactly one user comment records both changes and lastUpdated is bumped
    """
    now = clock.advance(minutes=10)
    outcome = lifecycle.update_details(open_ticket.id, personas["employee"], priority="Critical", status="In Progress")
    ticket = outcome.ticket

    assert ticket.priority == "Critical"
    assert ticket.status == "In Progress"
    assert len(ticket.comments) == 1
    comment = ticket.comments[0]
    assert comment.message == "Priority changed to Critical; Status changed to In Progress"
    assert comment.author_role == "user"
    assert comment.author_email == "jane@example.com"
    assert comment.author_name == "Jane Doe"
    assert ticket.last_updated.replace(tzinfo=None) == now.replace(tzinfo=None)

    notification = _sent(dispatcher)[0]
    assert notification.kind == KIND_COMMENT
    assert notification.recipients == ["client@example.com"]


def test_update_details_without_changes_is_noop(lifecycle, open_ticket, personas, dispatcher, tickets):
    outcome = lifecycle.update_details(open_ticket.id, personas["employee"], priority="High", status="Open")
    assert outcome.changed is False
    assert tickets.find_by_id(open_ticket.id).comments == []
    dispatcher.dispatch.assert_not_called()


def test_category_change_renumbers(lifecycle, open_ticket, personas):
    """
    GIVEN a ticket numbered IN100000
    WHEN its category changes to Service request
    THEN it gets an SR number and a single comment records both facts
    """
    ticket = lifecycle.update_details(open_ticket.id, personas["employee"], category="Service request").ticket

    assert ticket.category == "Service request"
    assert ticket.ticket_number == "SR200000"
    assert [c.message for c in ticket.comments] == [
        "Category changed to Service request and Ticket ID updated to SR200000"
    ]


def test_retired_number_is_never_reused(lifecycle, open_ticket, personas, ticket_fields):
    lifecycle.update_details(open_ticket.id, personas["employee"], category="Service request")
    other = lifecycle.create_ticket(dict(ticket_fields, subject="Otro asunto")).ticket
    assert other.ticket_number == "IN100001"


def test_assignment_only_notifies_requester_once(lifecycle, open_ticket, personas, dispatcher):
    ticket = lifecycle.update_details(open_ticket.id, personas["project_manager"],
                                      assignee_email="jane@example.com").ticket

    assert ticket.assigned_to.to_document() == {"name": "Jane Doe", "email": "jane@example.com", "role": "employee"}
    assert ticket.assigned_by == "pm"
    assert ticket.comments[0].message == "Assigned to Jane Doe"

    sent = _sent(dispatcher)
    assert len(sent) == 1
    assert sent[0].kind == KIND_ASSIGNMENT
    assert sent[0].recipients == ["client@example.com"]


def test_unknown_responder_changes_nothing(lifecycle, open_ticket, personas, tickets):
    with pytest.raises(UnknownResponderError):
        lifecycle.update_details(open_ticket.id, personas["employee"], priority="Low",
                                 category="Change request", assignee_email="ghost@example.com")
    ticket = tickets.find_by_id(open_ticket.id)
    assert ticket.priority == "High"
    assert ticket.ticket_number == "IN100000"


def test_store_failure_leaves_ticket_unchanged(lifecycle, open_ticket, personas, tickets, monkeypatch):
    def failing_update(*args, **kwargs):
        raise pymongo.errors.OperationFailure("disco lleno")

    monkeypatch.setattr(tickets, "update", failing_update)
    with pytest.raises(DatabaseQueryError):
        lifecycle.update_details(open_ticket.id, personas["employee"], priority="Low")
    assert tickets.find_by_id(open_ticket.id).priority == "High"


def test_deleted_ticket_is_not_found(lifecycle, open_ticket, personas):
    lifecycle.delete_ticket(open_ticket.id, actor=personas["admin"])
    with pytest.raises(TicketNotFoundError):
        lifecycle.update_details(open_ticket.id, personas["employee"], priority="Low")
    with pytest.raises(TicketNotFoundError):
        lifecycle.delete_ticket(open_ticket.id)


# --- Resolución ---

def test_save_resolution_appends_resolver_comment(lifecycle, open_ticket, personas, dispatcher):
    outcome = lifecycle.save_resolution(open_ticket.id, personas["employee"], "Reiniciado el servicio",
                                        status="Resolved")
    ticket = outcome.ticket

    assert ticket.status == "Resolved"
    assert ticket.resolution == "Reiniciado el servicio"
    comment = ticket.comments[-1]
    assert comment.author_role == "resolver"
    assert comment.message == "Resolution updated by Jane Doe:\nReiniciado el servicio"
    assert _sent(dispatcher)[0].kind == KIND_RESOLUTION


def test_save_resolution_rejects_empty_text_for_terminal_status(lifecycle, open_ticket, personas, tickets):
    with pytest.raises(MissingResolutionError):
        lifecycle.save_resolution(open_ticket.id, personas["employee"], "   ", status="Closed")
    assert tickets.find_by_id(open_ticket.id).status == "Open"
