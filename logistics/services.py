"""
Двофазне завершення доставки.

    planned --log_delivery--> processing --confirm_completion--> completed
    processing --log_delivery--> processing   (повторна фіксація замінює попередню)
    planned | processing --cancel--> cancelled

Кожна фаза виконується в одній транзакції з блокуванням рядка заявки
(select_for_update), тому паралельні спроби для однієї заявки йдуть
послідовно. Статистика водіїв перераховується лише після фіксації
транзакції, і її помилки не відкочують збережену доставку.
"""

import logging
import time
from decimal import Decimal
from functools import partial

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import Avg, Count, Max, Sum

from drivers.models import Driver

from .exceptions import (
    AlreadyLogged,
    Contention,
    DriverNotFound,
    NotFound,
    ValidationFailure,
    is_lock_contention,
)
from .models import Delivery, DriverRating, TransportationRequest

logger = logging.getLogger(__name__)


def run_with_lock_retry(operation, *args, **kwargs):
    """
    Виконує operation, повторюючи її при конфлікті блокувань.

    Після спроби n чекаємо base * 2**n секунд; коли спроби вичерпано,
    кидаємо Contention. Інші помилки бази пробрасуються без змін.
    """
    max_attempts = settings.DELIVERY_LOCK_MAX_ATTEMPTS
    base_delay = settings.DELIVERY_LOCK_RETRY_BASE_DELAY
    attempt = 1
    while True:
        try:
            return operation(*args, **kwargs)
        except DatabaseError as exc:
            if not is_lock_contention(exc):
                raise
            if attempt >= max_attempts:
                logger.error('Lock contention persisted after %s attempts: %s', attempt, exc)
                raise Contention(
                    'Заявка зайнята іншою операцією. Спробуйте пізніше.',
                    detail={'attempts': attempt},
                ) from exc
            delay = base_delay * 2 ** attempt
            logger.warning('Lock contention on attempt %s, retrying in %.1fs', attempt, delay)
            time.sleep(delay)
            attempt += 1


def lock_request(request_id):
    try:
        return TransportationRequest.objects.select_for_update().get(pk=request_id)
    except TransportationRequest.DoesNotExist:
        raise NotFound(f'Заявку з ID {request_id} не знайдено')


def _resolve_driver(assignment):
    """Існуючий водій (з блокуванням рядка) або новий із даних запиту"""
    driver_id = assignment['driver_id']
    if driver_id is None:
        return Driver.objects.create(**assignment['driver_data'])
    try:
        driver = Driver.objects.select_for_update().get(pk=driver_id)
    except Driver.DoesNotExist:
        raise DriverNotFound(driver_id)
    if driver.is_archived:
        raise ValidationFailure({'driver_id': [f'Водій {driver.name} в архіві']})
    return driver


def _schedule_refresh(driver_ids):
    if driver_ids:
        transaction.on_commit(partial(refresh_driver_statistics, set(driver_ids)))


def log_delivery(request_id, delivery_data, assignments):
    """
    Фаза 1: фіксує доставку та оцінки водіїв, заявка переходить у processing.

    Повторний виклик у статусі processing повністю замінює попередню
    доставку та її оцінки даними нового виклику.

    Статистика водіїв у результаті перечитується з бази після виклику.
    Якщо виклик вкладений у зовнішню транзакцію, перерахунок відкладається
    до її коміту, і водії повертаються з попередніми значеннями.
    """
    result = run_with_lock_retry(_log_delivery_once, request_id, delivery_data, assignments)
    for driver in result['drivers']:
        driver.refresh_from_db()
    logger.info(
        'Delivery %s logged for request %s with %s driver(s)',
        result['delivery'].pk, request_id, len(result['drivers']),
    )
    return result


def _log_delivery_once(request_id, delivery_data, assignments):
    with transaction.atomic():
        transport_request = lock_request(request_id)
        transport_request.ensure_status('planned', 'processing', action='зафіксувати доставку')

        touched = set()
        previous = Delivery.objects.filter(request=transport_request).first()
        if previous is not None:
            if transport_request.status == 'planned':
                raise AlreadyLogged(
                    'Доставку для цієї заявки вже зафіксовано',
                    detail={'delivery_id': previous.pk},
                )
            # Непідтверджена спроба замінюється разом з оцінками
            touched.update(previous.ratings.values_list('driver_id', flat=True))
            previous.delete()
            logger.info('Replacing unconfirmed delivery for request %s', request_id)

        delivery = Delivery.objects.create(request=transport_request, **delivery_data)

        drivers = []
        for assignment in assignments:
            driver = _resolve_driver(assignment)
            DriverRating.objects.create(delivery=delivery, driver=driver, **assignment['rating'])
            drivers.append(driver)
            touched.add(driver.pk)

        transport_request.status = 'processing'
        transport_request.save(update_fields=['status', 'updated_at'])

        _schedule_refresh(touched)

    return {'delivery': delivery, 'drivers': drivers}


def confirm_completion(request_id):
    """Фаза 2: processing -> completed"""
    result = run_with_lock_retry(_confirm_once, request_id)
    logger.info('Request %s confirmed as completed', request_id)
    return result


def _confirm_once(request_id):
    with transaction.atomic():
        transport_request = lock_request(request_id)
        transport_request.ensure_status('processing', action='підтвердити завершення')
        transport_request.status = 'completed'
        transport_request.save(update_fields=['status', 'updated_at'])
    return {'request_id': transport_request.pk, 'status': transport_request.status}


def cancel(request_id):
    """Скасування заявки; непідтверджена доставка видаляється"""
    with transaction.atomic():
        transport_request = lock_request(request_id)
        transport_request.ensure_status('planned', 'processing', action='скасувати заявку')

        delivery = Delivery.objects.filter(request=transport_request).first()
        driver_ids = set()
        if delivery is not None:
            driver_ids.update(delivery.ratings.values_list('driver_id', flat=True))
            delivery.delete()

        transport_request.status = 'cancelled'
        transport_request.save(update_fields=['status', 'updated_at'])
        _schedule_refresh(driver_ids)

    logger.info('Request %s cancelled', request_id)
    return transport_request


def update_delivery(request_id, delivery_data, rating_entries=None):
    """
    Редагування зафіксованої доставки (processing або completed).

    Якщо передано rating_entries: записи з rating_id оновлюють свою оцінку,
    записи без rating_id створюють нову, а наявні оцінки, чиїх id немає в
    запиті, видаляються. rating_id має належати саме цій доставці.
    """
    with transaction.atomic():
        transport_request = lock_request(request_id)
        transport_request.ensure_status('processing', 'completed', action='редагувати доставку')
        try:
            delivery = Delivery.objects.select_for_update().get(request=transport_request)
        except Delivery.DoesNotExist:
            raise NotFound('Доставку для цієї заявки не знайдено')

        for field, value in delivery_data.items():
            setattr(delivery, field, value)
        delivery.save()

        touched = set()
        if delivery_data:
            # Зміна фактичних даних впливає на last_delivery всіх оцінених водіїв
            touched.update(delivery.ratings.values_list('driver_id', flat=True))
        if rating_entries is not None:
            touched.update(_apply_rating_diff(delivery, rating_entries))

        _schedule_refresh(touched)

    logger.info('Delivery %s updated for request %s', delivery.pk, request_id)
    return delivery


def _apply_rating_diff(delivery, rating_entries):
    existing = {rating.pk: rating for rating in delivery.ratings.all()}

    errors = {}
    for index, entry in enumerate(rating_entries):
        if entry['rating_id'] is not None and entry['rating_id'] not in existing:
            errors[f'drivers[{index}].rating_id'] = ['Оцінка не належить цій доставці']
    if errors:
        raise ValidationFailure(errors)

    submitted = {entry['rating_id'] for entry in rating_entries if entry['rating_id'] is not None}
    touched = set()

    for rating_id in existing.keys() - submitted:
        rating = existing[rating_id]
        touched.add(rating.driver_id)
        rating.delete()

    rated_drivers = {existing[rating_id].driver_id for rating_id in submitted}
    for index, entry in enumerate(rating_entries):
        if entry['rating_id'] is not None:
            rating = existing[entry['rating_id']]
            for field, value in entry['rating'].items():
                setattr(rating, field, value)
            rating.save()
            touched.add(rating.driver_id)
            continue

        driver = _resolve_driver(entry)
        if driver.pk in rated_drivers:
            raise ValidationFailure({f'drivers[{index}].driver_id': ['Водій вже має оцінку за цю доставку']})
        rated_drivers.add(driver.pk)
        DriverRating.objects.create(delivery=delivery, driver=driver, **entry['rating'])
        touched.add(driver.pk)

    return touched


def get_delivery(request_id):
    try:
        transport_request = TransportationRequest.objects.get(pk=request_id)
    except TransportationRequest.DoesNotExist:
        raise NotFound(f'Заявку з ID {request_id} не знайдено')
    try:
        return (
            Delivery.objects
            .select_related('request')
            .prefetch_related('ratings__driver')
            .get(request=transport_request)
        )
    except Delivery.DoesNotExist:
        raise NotFound('Доставку для цієї заявки не знайдено')


def refresh_driver_statistics(driver_ids):
    """
    Перераховує overall_rating, total_deliveries і last_delivery водіїв.

    Помилка для одного водія лише логується: решта водіїв оновлюється,
    а вже збережені доставки не зачіпаються.
    """
    refreshed = []
    for driver_id in sorted(driver_ids):
        try:
            driver = Driver.objects.get(pk=driver_id)
            totals = DriverRating.objects.filter(driver=driver).aggregate(
                deliveries=Count('delivery', distinct=True),
                last=Max('delivery__actual_pickup_at'),
            )
            driver.overall_rating = Decimal(str(driver.calculate_overall_rating()))
            driver.total_deliveries = totals['deliveries']
            driver.last_delivery = totals['last']
            driver.save(update_fields=['overall_rating', 'total_deliveries', 'last_delivery', 'updated_at'])
            refreshed.append(driver_id)
        except Exception:
            logger.warning('Failed to refresh statistics for driver %s', driver_id, exc_info=True)
    return refreshed


def _round(value, places=2):
    return round(float(value), places) if value is not None else 0


def delivery_stats(start=None, end=None):
    """Зведення по доставках за період (дати фактичного забору)"""
    deliveries = Delivery.objects.filter(request__deleted_at__isnull=True)
    if start:
        deliveries = deliveries.filter(actual_pickup_at__date__gte=start)
    if end:
        deliveries = deliveries.filter(actual_pickup_at__date__lte=end)

    totals = deliveries.aggregate(
        count=Count('id'),
        avg_trucks=Avg('actual_truck_count'),
        revenue=Sum('invoice_amount'),
        avg_invoice=Avg('invoice_amount'),
    )
    rating = DriverRating.objects.filter(delivery__in=deliveries).aggregate(avg=Avg('overall'))

    return {
        'total_deliveries': totals['count'],
        'average_truck_count': _round(totals['avg_trucks']),
        'total_revenue': _round(totals['revenue']),
        'average_invoice': _round(totals['avg_invoice']),
        'average_rating': _round(rating['avg'], 1),
    }


def performance_summary(date_from=None, date_to=None):
    """Середні показники виконання і розподіл оцінок по завершених заявках"""
    requests = (
        TransportationRequest.objects
        .filter(status='completed', delivery__isnull=False)
        .select_related('delivery')
    )
    if date_from:
        requests = requests.filter(pickup_at__date__gte=date_from)
    if date_to:
        requests = requests.filter(pickup_at__date__lte=date_to)

    distribution = {'excellent': 0, 'good': 0, 'fair': 0, 'poor': 0}
    metrics = [transport_request.performance_metrics() for transport_request in requests]
    if not metrics:
        return {'total_requests': 0, 'average_metrics': None, 'performance_distribution': distribution}

    for metric in metrics:
        distribution[metric['performance_grade'].lower()] += 1

    def average(key):
        return round(sum(metric[key] for metric in metrics) / len(metrics), 2)

    return {
        'total_requests': len(metrics),
        'average_metrics': {
            'avg_delay_minutes': average('delay_minutes'),
            'avg_truck_variance': average('truck_variance'),
            'avg_cost_variance': average('cost_variance'),
            'avg_truck_variance_percentage': average('truck_variance_percentage'),
            'avg_cost_variance_percentage': average('cost_variance_percentage'),
        },
        'performance_distribution': distribution,
    }
