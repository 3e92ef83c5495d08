from flask_wtf import FlaskForm
from flask_wtf.file import MultipleFileField
from wtforms import TextAreaField, SelectField, StringField
from wtforms.validators import DataRequired, Length, Optional
from ticketdesk.models import CATEGORIES, PRIORITIES, STATUSES, DEFAULT_PRIORITY, CATEGORY_INCIDENT
from ticketdesk.lifecycle import OTHER_CATEGORY


class CreateTicketForm(FlaskForm):
    # Nombre y email vacíos se completan con los del usuario de la sesión.
    name = StringField('Nombre', validators=[Optional(), Length(max=100)])
    email = StringField('Email', validators=[Optional(), Length(max=120)])
    subject = StringField('Asunto', validators=[DataRequired(message="Subject is required"), Length(max=200)])
    description = TextAreaField('Descripción', validators=[DataRequired(message="Description is required"), Length(max=20000)])
    project = StringField('Proyecto', validators=[Optional(), Length(max=100)])
    category = SelectField('Categoría', choices=[(c, c) for c in CATEGORIES + [OTHER_CATEGORY]], default=CATEGORY_INCIDENT)
    otherIssue = StringField('Otra categoría', validators=[Optional(), Length(max=100)])
    module = StringField('Módulo', validators=[Optional(), Length(max=100)])
    subCategory = StringField('Subcategoría', validators=[Optional(), Length(max=100)])
    typeOfIssue = StringField('Tipo de incidencia', validators=[Optional(), Length(max=100)])
    priority = SelectField('Prioridad', choices=[(p, p) for p in PRIORITIES], default=DEFAULT_PRIORITY)
    attachments = MultipleFileField('Adjuntos')


class TicketFilterForm(FlaskForm):
    class Meta:
        csrf = False
    status = SelectField('Estado', choices=[('', 'Todos los Estados')] + [(s, s) for s in STATUSES], default='')
    priority = SelectField('Prioridad', choices=[('', 'Todas las Prioridades')] + [(p, p) for p in PRIORITIES], default='')
    search_subject = StringField('Asunto', validators=[Optional(), Length(max=100)])
