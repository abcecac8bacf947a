from django import forms
from django.forms.models import model_to_dict

from drivers.forms import DriverForm

from .exceptions import ValidationFailure
from .models import DriverRating, TransportationRequest
from .responses import form_errors


class RequestForm(forms.ModelForm):
    """Створення та редагування заявки (статус змінює лише робочий процес)"""

    class Meta:
        model = TransportationRequest
        fields = [
            'origin', 'destination', 'estimated_distance', 'pickup_at',
            'truck_count', 'truck_type', 'load_details', 'special_requirements',
            'estimated_cost', 'urgency_level', 'created_by',
        ]

    # Поля зі значенням за замовчуванням у моделі можна не передавати
    DEFAULTED_FIELDS = ('truck_type', 'urgency_level', 'created_by')

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        for name in self.DEFAULTED_FIELDS:
            self.fields[name].required = False

    def clean(self):
        cleaned_data = super().clean()
        for name in self.DEFAULTED_FIELDS:
            if not cleaned_data.get(name) and name not in self.errors:
                cleaned_data[name] = TransportationRequest._meta.get_field(name).default

        origin = cleaned_data.get('origin')
        destination = cleaned_data.get('destination')
        if origin and destination and origin.strip().lower() == destination.strip().lower():
            self.add_error('destination', 'Пункт призначення має відрізнятися від пункту відправлення')
        return cleaned_data


def request_form_for_update(transport_request, data):
    """Форма для PUT/PATCH: відсутні в тілі поля беруться із заявки"""
    merged = model_to_dict(transport_request, fields=RequestForm._meta.fields)
    merged.update({key: value for key, value in data.items() if key in RequestForm._meta.fields})
    return RequestForm(data=merged, instance=transport_request)


class DeliveryForm(forms.Form):
    """Фактичні дані доставки"""

    actual_pickup_at = forms.DateTimeField(label='Фактичний час забору')
    actual_truck_count = forms.IntegerField(label='Фактична кількість вантажівок', min_value=1)
    invoice_amount = forms.DecimalField(label='Сума рахунку', min_value=0, max_digits=10, decimal_places=2)
    notes = forms.CharField(label='Примітки', required=False)
    logged_by = forms.CharField(label='Хто зафіксував', required=False, max_length=100)

    def __init__(self, *args, partial=False, **kwargs):
        super().__init__(*args, **kwargs)
        # При редагуванні всі поля необов'язкові
        if partial:
            for field in self.fields.values():
                field.required = False


NON_NULL_DELIVERY_FIELDS = ('actual_pickup_at', 'actual_truck_count', 'invoice_amount')


class RatingForm(forms.ModelForm):
    """Оцінки водія від 1 до 5"""

    class Meta:
        model = DriverRating
        fields = list(DriverRating.REQUIRED_SCORES + DriverRating.OPTIONAL_SCORES) + ['comments']


def _extract_rating(entry):
    # Оцінка або вкладена в "rating", або лежить прямо в записі водія
    nested = entry.get('rating')
    if isinstance(nested, dict):
        return nested
    return {field: entry[field] for field in RatingForm._meta.fields if field in entry}


def _driver_reference(entry):
    driver_id = entry.get('driver_id', entry.get('id'))
    if driver_id in (None, ''):
        return None
    if isinstance(driver_id, bool):
        return driver_id
    try:
        return int(driver_id)
    except (TypeError, ValueError):
        return driver_id


def validate_driver_entries(entries, allow_rating_id=False):
    """
    Перевіряє список водіїв з оцінками.

    Повертає список словників {driver_id, driver_data, rating, rating_id}.
    Помилки збираються з ключами виду drivers[0].punctuality.
    """
    errors = {}
    cleaned = []
    seen_drivers = set()

    if not isinstance(entries, list) or not entries:
        raise ValidationFailure({'drivers': ['Потрібен щонайменше один водій']})

    for index, entry in enumerate(entries):
        prefix = f'drivers[{index}].'
        if not isinstance(entry, dict):
            errors[f'drivers[{index}]'] = ['Очікується обʼєкт']
            continue

        rating_id = entry.get('rating_id') if allow_rating_id else None
        driver_id = _driver_reference(entry)
        driver_data = None

        if rating_id is not None and (isinstance(rating_id, bool) or not isinstance(rating_id, int)):
            errors[f'{prefix}rating_id'] = ['Ідентифікатор оцінки має бути цілим числом']
        elif rating_id is None:
            if driver_id is None:
                # Новий водій створюється разом із доставкою
                driver_form = DriverForm(data=entry)
                if driver_form.is_valid():
                    driver_data = driver_form.cleaned_data
                else:
                    errors.update(form_errors(driver_form, prefix))
            elif isinstance(driver_id, bool) or not isinstance(driver_id, int):
                errors[f'{prefix}driver_id'] = ['Ідентифікатор водія має бути цілим числом']
            elif driver_id in seen_drivers:
                errors[f'{prefix}driver_id'] = ['Водія вказано двічі']
            else:
                seen_drivers.add(driver_id)

        rating_form = RatingForm(data=_extract_rating(entry))
        if rating_form.is_valid():
            rating = rating_form.cleaned_data
        else:
            rating = None
            errors.update(form_errors(rating_form, prefix))

        cleaned.append({
            'driver_id': driver_id,
            'driver_data': driver_data,
            'rating': rating,
            'rating_id': rating_id,
        })

    if errors:
        raise ValidationFailure(errors)
    return cleaned


def validate_delivery_payload(data, partial=False):
    """
    Тіло запиту фіксації або редагування доставки.

    Повертає (delivery_data, assignments); при partial=True у delivery_data
    потрапляють лише передані поля, а assignments може бути None.
    """
    form = DeliveryForm(data=data, partial=partial)
    errors = {} if form.is_valid() else form_errors(form)

    assignments = None
    if not partial or 'drivers' in data:
        try:
            assignments = validate_driver_entries(data.get('drivers'), allow_rating_id=partial)
        except ValidationFailure as exc:
            errors.update(exc.detail)

    if partial:
        # Передане поле не можна очистити: у доставці воно обов'язкове
        for key in NON_NULL_DELIVERY_FIELDS:
            if key in data and key not in errors and form.cleaned_data.get(key) is None:
                errors[key] = ['Поле не може бути порожнім']

    if errors:
        raise ValidationFailure(errors)

    if partial:
        delivery_data = {key: value for key, value in form.cleaned_data.items() if key in data}
    else:
        delivery_data = dict(form.cleaned_data)
    if 'logged_by' in delivery_data and not delivery_data['logged_by']:
        delivery_data['logged_by'] = 'System'
    return delivery_data, assignments
