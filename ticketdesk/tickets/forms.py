from flask_wtf import FlaskForm
from flask_wtf.file import MultipleFileField
from wtforms import TextAreaField, SelectField, StringField
from wtforms.validators import DataRequired, Length, Optional
from ticketdesk.models import PRIORITIES, STATUSES


def _with_blank(values):
    return [('', '---')] + [(v, v) for v in values]


class TicketDetailsForm(FlaskForm):
    # Los campos vacíos se ignoran: solo se aplican los que cambian.
    priority = SelectField('Prioridad', choices=_with_blank(PRIORITIES), default='')
    status = SelectField('Estado', choices=_with_blank(STATUSES), default='')
    category = StringField('Categoría', validators=[Optional(), Length(max=100)])
    assignee_email = StringField('Asignar a', validators=[Optional(), Length(max=120)])


class ResolutionForm(FlaskForm):
    resolution = TextAreaField('Resolución', validators=[Optional(), Length(max=20000)])
    status = SelectField('Estado', choices=_with_blank(STATUSES), default='')
    attachments = MultipleFileField('Adjuntos de la resolución')


class CommentForm(FlaskForm):
    message = TextAreaField('Comentario', validators=[DataRequired(message="Este campo es obligatorio"), Length(max=20000)])
    attachments = MultipleFileField('Adjuntos')


class EditCommentForm(FlaskForm):
    message = TextAreaField('Comentario', validators=[DataRequired(message="Este campo es obligatorio"), Length(max=20000)])


class AssignTicketForm(FlaskForm):
    responder_email = StringField('Asignar a:', validators=[DataRequired(message="Este campo es obligatorio"), Length(max=120)])
