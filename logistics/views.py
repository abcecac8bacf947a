from django.db import connection, transaction
from django.db.models import Count, Q
from django.utils import timezone
from django.utils.dateparse import parse_date

from drivers.serializers import serialize_driver

from . import services
from .exceptions import NotFound, ValidationFailure
from .forms import RequestForm, request_form_for_update, validate_delivery_payload
from .models import TransportationRequest
from .responses import api_view, failure, form_errors, paginate, parse_json_body, success
from .serializers import serialize_delivery, serialize_request


def _date_param(params, *names):
    """Дата з параметрів запиту (перше непорожнє ім'я з names)"""
    for name in names:
        raw = params.get(name)
        if not raw:
            continue
        value = parse_date(raw)
        if value is None:
            raise ValidationFailure({name: ['Дата має бути у форматі YYYY-MM-DD']})
        return value
    return None


def _get_request(pk):
    try:
        return TransportationRequest.objects.select_related('delivery').get(pk=pk)
    except TransportationRequest.DoesNotExist:
        raise NotFound(f'Заявку з ID {pk} не знайдено')


# Список заявок з фільтрами та пагінацією, або створення нової
@api_view(['GET', 'POST'])
def requests_collection(request):
    if request.method == 'POST':
        form = RequestForm(data=parse_json_body(request))
        if not form.is_valid():
            raise ValidationFailure(form_errors(form))
        transport_request = form.save()
        return success(
            serialize_request(transport_request),
            message=f'Заявку {transport_request.request_number} створено',
            status=201,
        )

    requests = TransportationRequest.objects.all()

    # Фільтри за точним збігом
    for field in ('status', 'urgency_level', 'truck_type'):
        value = request.GET.get(field)
        if value:
            requests = requests.filter(**{field: value})

    search = request.GET.get('search', '').strip()
    if search:
        requests = requests.filter(
            Q(request_number__icontains=search) |
            Q(origin__icontains=search) |
            Q(destination__icontains=search) |
            Q(created_by__icontains=search)
        )

    date_from = _date_param(request.GET, 'date_from')
    date_to = _date_param(request.GET, 'date_to')
    if date_from:
        requests = requests.filter(pickup_at__date__gte=date_from)
    if date_to:
        requests = requests.filter(pickup_at__date__lte=date_to)

    items, pagination = paginate(request, requests.order_by('-created_at'), serialize_request)

    counts = TransportationRequest.objects.aggregate(
        completed=Count('id', filter=Q(status='completed')),
        planned=Count('id', filter=Q(status='planned')),
    )
    return success({'requests': items, 'pagination': pagination, 'counts': counts})


# Деталі, редагування та м'яке видалення заявки
@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
def request_detail(request, pk):
    if request.method == 'GET':
        return success(serialize_request(_get_request(pk), detailed=True))

    if request.method == 'DELETE':
        with transaction.atomic():
            transport_request = services.lock_request(pk)
            transport_request.soft_delete()
        return success({'id': pk}, message=f'Заявку {transport_request.request_number} видалено')

    data = parse_json_body(request)
    if 'status' in data:
        raise ValidationFailure({'status': ['Статус змінюється лише через фіксацію, підтвердження або скасування']})

    with transaction.atomic():
        transport_request = services.lock_request(pk)
        transport_request.ensure_status('planned', 'processing', 'cancelled', action='редагувати заявку')
        if request.method == 'PUT':
            form = RequestForm(data=data, instance=transport_request)
        else:
            form = request_form_for_update(transport_request, data)
        if not form.is_valid():
            raise ValidationFailure(form_errors(form))
        transport_request = form.save()

    return success(serialize_request(transport_request), message='Заявку оновлено')


@api_view(['POST'])
def request_cancel(request, pk):
    transport_request = services.cancel(pk)
    return success(serialize_request(transport_request), message=f'Заявку {transport_request.request_number} скасовано')


@api_view(['GET'])
def request_performance(request, pk):
    transport_request = _get_request(pk)
    metrics = transport_request.performance_metrics()
    if metrics is None:
        raise NotFound('Для цієї заявки ще немає доставки')
    return success({
        'request_id': transport_request.pk,
        'request_number': transport_request.request_number,
        'metrics': metrics,
    })


@api_view(['GET'])
def performance_summary(request):
    summary = services.performance_summary(
        date_from=_date_param(request.GET, 'date_from'),
        date_to=_date_param(request.GET, 'date_to'),
    )
    return success(summary)


# Фаза 1 (POST), перегляд (GET) і редагування (PUT) доставки
@api_view(['GET', 'POST', 'PUT'])
def request_delivery(request, pk):
    if request.method == 'GET':
        return success(serialize_delivery(services.get_delivery(pk)))

    data = parse_json_body(request)

    if request.method == 'PUT':
        delivery_data, rating_entries = validate_delivery_payload(data, partial=True)
        delivery = services.update_delivery(pk, delivery_data, rating_entries)
        return success(serialize_delivery(delivery), message='Доставку оновлено')

    delivery_data, assignments = validate_delivery_payload(data)
    result = services.log_delivery(pk, delivery_data, assignments)
    return success(
        {
            'delivery': serialize_delivery(result['delivery']),
            'drivers': [serialize_driver(driver) for driver in result['drivers']],
            'status': 'processing',
        },
        message='Доставку зафіксовано. Підтвердіть завершення.',
        status=201,
    )


# Фаза 2: підтвердження завершення
@api_view(['POST'])
def confirm_delivery(request, pk):
    result = services.confirm_completion(pk)
    return success(result, message='Доставку завершено')


@api_view(['GET'])
def delivery_stats(request):
    start = _date_param(request.GET, 'start_date', 'startDate')
    end = _date_param(request.GET, 'end_date', 'endDate')
    if start and end and end < start:
        raise ValidationFailure({'end_date': ['Кінцева дата має бути не раніше початкової']})
    return success(services.delivery_stats(start, end))


@api_view(['GET'])
def health(request):
    try:
        connection.ensure_connection()
    except Exception as exc:
        return failure('База даних недоступна', status=503, code='UNAVAILABLE', detail=str(exc))
    return success({'status': 'ok', 'timestamp': timezone.now()})
