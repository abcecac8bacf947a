import logging

from django.db.models import F, Q

from logistics.exceptions import NotFound, ValidationFailure
from logistics.responses import api_view, form_errors, paginate, parse_json_body, success
from logistics.serializers import serialize_rating

from .forms import DriverForm, driver_form_for_update
from .models import Driver
from .ratings import analyze_recent_performance, assess_risk, calculate_summary, generate_recommendations
from .serializers import serialize_driver

logger = logging.getLogger(__name__)

RECENT_LIMIT = 10


def _get_driver(pk):
    try:
        return Driver.objects.get(pk=pk)
    except Driver.DoesNotExist:
        raise NotFound(f'Водія з ID {pk} не знайдено')


def _rating_history(driver):
    # Від нових до старих за часом фактичного забору
    return (
        driver.ratings
        .select_related('delivery__request')
        .order_by('-delivery__actual_pickup_at', '-created_at')
    )


def _serialize_history_item(rating):
    data = serialize_rating(rating, with_driver=False)
    data['request_number'] = rating.delivery.request.request_number
    data['delivery_date'] = rating.delivery.actual_pickup_at
    return data


# Список водіїв з пошуком або створення нового
@api_view(['GET', 'POST'])
def drivers_collection(request):
    if request.method == 'POST':
        form = DriverForm(data=parse_json_body(request))
        if not form.is_valid():
            raise ValidationFailure(form_errors(form))
        driver = form.save()
        logger.info('Driver %s created (%s)', driver.pk, driver.type)
        return success(serialize_driver(driver), message='Водія створено', status=201)

    drivers = Driver.objects.all()
    if request.GET.get('include_archived', '').lower() not in ('1', 'true', 'yes'):
        drivers = drivers.filter(is_archived=False)

    driver_type = request.GET.get('type')
    if driver_type:
        drivers = drivers.filter(type=driver_type)

    search = request.GET.get('search', '').strip()
    if search:
        drivers = drivers.filter(
            Q(name__icontains=search) |
            Q(transport_company__icontains=search) |
            Q(employee_id__icontains=search)
        )

    items, pagination = paginate(request, drivers.order_by('name'), serialize_driver)
    return success({'drivers': items, 'pagination': pagination})


@api_view(['GET'])
def recent_drivers(request):
    try:
        limit = min(int(request.GET.get('limit', RECENT_LIMIT)), 50)
    except ValueError:
        limit = RECENT_LIMIT
    drivers = (
        Driver.objects
        .filter(is_archived=False)
        .order_by(F('last_delivery').desc(nulls_last=True), 'name')[:max(limit, 1)]
    )
    return success([serialize_driver(driver) for driver in drivers])


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
def driver_detail(request, pk):
    driver = _get_driver(pk)

    if request.method == 'GET':
        data = serialize_driver(driver)
        data['rating_summary'] = calculate_summary(driver.ratings.all())
        return success(data)

    if request.method == 'DELETE':
        # Водій з оцінками не видаляється (DriverInUse -> 400)
        driver.delete()
        logger.info('Driver %s deleted', pk)
        return success({'id': pk}, message='Водія видалено')

    data = parse_json_body(request)
    if request.method == 'PUT':
        form = DriverForm(data=data, instance=driver)
    else:
        form = driver_form_for_update(driver, data)
    if not form.is_valid():
        raise ValidationFailure(form_errors(form))
    driver = form.save()
    return success(serialize_driver(driver), message='Дані водія оновлено')


@api_view(['POST'])
def driver_archive(request, pk):
    driver = _get_driver(pk)
    archived = parse_json_body(request).get('is_archived', True)
    if not isinstance(archived, bool):
        raise ValidationFailure({'is_archived': ['Очікується true або false']})
    driver.is_archived = archived
    driver.save(update_fields=['is_archived', 'updated_at'])
    message = 'Водія перенесено в архів' if archived else 'Водія повернуто з архіву'
    return success(serialize_driver(driver), message=message)


@api_view(['GET'])
def driver_ratings(request, pk):
    driver = _get_driver(pk)
    history = list(_rating_history(driver))
    return success({
        'driver': serialize_driver(driver),
        'summary': calculate_summary(history),
        'ratings': [_serialize_history_item(rating) for rating in history],
    })


@api_view(['GET'])
def driver_insights(request, pk):
    driver = _get_driver(pk)
    history = list(_rating_history(driver))
    summary = calculate_summary(history)
    return success({
        'driver': serialize_driver(driver),
        'summary': summary,
        'recent_performance': analyze_recent_performance(history),
        'recommendations': generate_recommendations(summary),
        'risk_assessment': assess_risk(summary, history),
    })
