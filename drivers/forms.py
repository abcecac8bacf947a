from django import forms
from django.forms.models import model_to_dict

from .models import Driver


class DriverForm(forms.ModelForm):
    """Форма водія; обов'язкові поля варіанту перевіряє Driver.clean()"""

    class Meta:
        model = Driver
        fields = [
            'name', 'type',
            'transport_company', 'phone', 'license_number',
            'employee_id', 'department', 'hire_date',
        ]

    def clean(self):
        cleaned_data = super().clean()
        # Поля чужого варіанту очищаємо, щоб не змішувати дані
        driver_type = cleaned_data.get('type')
        if driver_type in Driver.VARIANT_FIELDS:
            for variant, fields in Driver.VARIANT_FIELDS.items():
                if variant == driver_type:
                    continue
                for field in fields:
                    if field in cleaned_data:
                        cleaned_data[field] = None if field == 'hire_date' else ''
        return cleaned_data


def driver_form_for_update(driver, data):
    """Форма для PUT/PATCH: відсутні в тілі поля беруться з водія"""
    merged = model_to_dict(driver, fields=DriverForm._meta.fields)
    merged.update({key: value for key, value in data.items() if key in DriverForm._meta.fields})
    return DriverForm(data=merged, instance=driver)
