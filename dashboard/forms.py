from datetime import timedelta

from django import forms
from django.conf import settings
from django.utils import timezone

# Період за замовчуванням, якщо дати не передано
DEFAULT_RANGE_DAYS = 30


class DateRangeForm(forms.Form):
    """Період аналітики: обидві дати включно"""

    start_date = forms.DateField(label='Початкова дата', required=False)
    end_date = forms.DateField(label='Кінцева дата', required=False)

    @classmethod
    def from_query(cls, params):
        # Підтримуємо і startDate/endDate, і start_date/end_date
        return cls(data={
            'start_date': params.get('start_date') or params.get('startDate'),
            'end_date': params.get('end_date') or params.get('endDate'),
        })

    def clean(self):
        cleaned_data = super().clean()
        if self.errors:
            return cleaned_data

        end = cleaned_data.get('end_date') or timezone.localdate()
        start = cleaned_data.get('start_date') or end - timedelta(days=DEFAULT_RANGE_DAYS - 1)

        if end < start:
            raise forms.ValidationError({'end_date': 'Кінцева дата має бути не раніше початкової'})
        if (end - start).days > settings.DASHBOARD_MAX_RANGE_DAYS:
            raise forms.ValidationError({
                'end_date': f'Період не може перевищувати {settings.DASHBOARD_MAX_RANGE_DAYS} днів',
            })

        cleaned_data['start_date'] = start
        cleaned_data['end_date'] = end
        return cleaned_data
