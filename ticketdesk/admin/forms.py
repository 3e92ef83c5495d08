from flask_wtf import FlaskForm
from wtforms import SelectField, StringField, IntegerField, DateField
from wtforms.validators import Length, NumberRange, Optional, ValidationError
from ticketdesk.kpi import PERIOD_PRESETS

TREND_CHOICES = [('', 'Sin tendencia'), ('week_of_month', 'Semanas del mes'), ('month', 'Meses')]


class KpiFilterForm(FlaskForm):
    class Meta:
        csrf = False
    project = StringField('Proyecto', validators=[Optional(), Length(max=100)])
    period = SelectField('Periodo', choices=[('', 'Todo')] + [(p, p) for p in PERIOD_PRESETS], default='')
    n = IntegerField('Número de periodos', validators=[Optional(), NumberRange(min=1, max=52)], default=1)
    start_date = DateField('Fecha Desde', format='%Y-%m-%d', validators=[Optional()])
    end_date = DateField('Fecha Hasta', format='%Y-%m-%d', validators=[Optional()])
    trend = SelectField('Tendencia', choices=TREND_CHOICES, default='')

    def validate_end_date(self, field):
        if field.data and self.start_date.data and field.data < self.start_date.data:
            raise ValidationError('La fecha final no puede ser anterior a la inicial.')
