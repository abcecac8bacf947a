"""
Аналітичні запити для панелі керування.

Усі запити лише читають дані: доставки за датою фактичного забору,
заявка не видалена і має статус processing або completed. Кожен запит
при помилці бази логує її та повертає нульове значення за замовчуванням.
"""

import copy
import logging
import statistics
from datetime import timedelta
from functools import wraps

from django.db import DatabaseError, transaction
from django.db.models import Avg, Case, Count, F, FloatField, Min, Q, When
from django.db.models.functions import Cast, ExtractHour, TruncDate

from drivers.models import Driver
from logistics.models import Delivery, DriverRating, TransportationRequest

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ('processing', 'completed')

# Доставка вчасна, якщо фактичний забір не пізніше планового
ON_TIME = Q(actual_pickup_at__lte=F('request__pickup_at'))
RATING_ON_TIME = Q(delivery__actual_pickup_at__lte=F('delivery__request__pickup_at'))


def _cost_variance_expression(prefix=''):
    # (рахунок - оцінка) * 100 / оцінка у відсотках
    invoice = Cast(f'{prefix}invoice_amount', FloatField())
    estimate = Cast(f'{prefix}request__estimated_cost', FloatField())
    return (invoice - estimate) * 100.0 / estimate


def safe_query(default):
    """Повертає копію default, якщо запит впав з помилкою бази"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                # Точка збереження, щоб помилка не зламала зовнішню транзакцію
                with transaction.atomic():
                    return func(*args, **kwargs)
            except DatabaseError:
                logger.exception('Dashboard query %s failed', func.__name__)
                return copy.deepcopy(default)
        return wrapper
    return decorator


def deliveries_between(start, end):
    return Delivery.objects.filter(
        request__deleted_at__isnull=True,
        request__status__in=ACTIVE_STATUSES,
        actual_pickup_at__date__gte=start,
        actual_pickup_at__date__lte=end,
    )


def ratings_between(start, end):
    return DriverRating.objects.filter(delivery__in=deliveries_between(start, end))


def previous_window(start, end):
    """Попередній період такої ж довжини, що закінчується за день до start"""
    previous_end = start - timedelta(days=1)
    return previous_end - (end - start), previous_end


def percent_change(current, previous):
    """Зміна у відсотках; 0, якщо базового значення немає або воно нульове"""
    if not previous:
        return 0
    return round((current - previous) / abs(previous) * 100, 1)


def _percent(part, total):
    return part * 100.0 / total if total else 0.0


@safe_query({'rate': 0.0, 'total': 0, 'on_time': 0})
def on_time_rate(start, end):
    totals = deliveries_between(start, end).aggregate(
        total=Count('id'),
        on_time=Count('id', filter=ON_TIME),
    )
    return {
        'rate': _percent(totals['on_time'], totals['total']),
        'total': totals['total'],
        'on_time': totals['on_time'],
    }


@safe_query({'variance': 0.0, 'total_with_costs': 0})
def cost_variance(start, end):
    totals = (
        deliveries_between(start, end)
        .filter(request__estimated_cost__gt=0, invoice_amount__gt=0)
        .aggregate(variance=Avg(_cost_variance_expression()), total=Count('id'))
    )
    return {
        'variance': totals['variance'] or 0.0,
        'total_with_costs': totals['total'],
    }


@safe_query({'rate': 0.0, 'active_drivers': 0, 'total_drivers': 0})
def fleet_utilization(start, end):
    active = ratings_between(start, end).values('driver').distinct().count()
    total = Driver.objects.count()
    return {
        'rate': _percent(active, total),
        'active_drivers': active,
        'total_drivers': total,
    }


@safe_query({'average': 0.0, 'total_ratings': 0})
def driver_performance(start, end):
    totals = ratings_between(start, end).aggregate(average=Avg('overall'), total=Count('id'))
    return {
        'average': totals['average'] or 0.0,
        'total_ratings': totals['total'],
    }


@safe_query({})
def daily_breakdown(start, end):
    """Показники по днях: {дата: {on_time, cost_variance, active_drivers, rating}}"""
    days = {}

    def day(date):
        return days.setdefault(date, {'on_time': 0.0, 'cost_variance': 0.0, 'active_drivers': 0, 'rating': 0.0})

    deliveries = deliveries_between(start, end).annotate(day=TruncDate('actual_pickup_at'))
    for row in deliveries.values('day').annotate(total=Count('id'), on_time=Count('id', filter=ON_TIME)):
        day(row['day'])['on_time'] = _percent(row['on_time'], row['total'])

    costed = deliveries.filter(request__estimated_cost__gt=0, invoice_amount__gt=0)
    for row in costed.values('day').annotate(variance=Avg(_cost_variance_expression())):
        day(row['day'])['cost_variance'] = row['variance'] or 0.0

    ratings = ratings_between(start, end).annotate(day=TruncDate('delivery__actual_pickup_at'))
    for row in ratings.values('day').annotate(
        active=Count('driver', distinct=True),
        rating=Avg('overall'),
    ):
        day(row['day'])['active_drivers'] = row['active']
        day(row['day'])['rating'] = row['rating'] or 0.0

    return days


@safe_query([])
def route_efficiency(start, end, limit=5):
    """Найчастіші маршрути з часткою вчасних доставок і відхиленням вартості"""
    rows = (
        deliveries_between(start, end)
        .values('request__origin', 'request__destination')
        .annotate(
            delivery_count=Count('id'),
            on_time=Count('id', filter=ON_TIME),
            avg_cost_variance=Avg(Case(
                When(request__estimated_cost__gt=0, then=_cost_variance_expression()),
                output_field=FloatField(),
            )),
        )
        .order_by('-delivery_count', 'request__origin', 'request__destination')[:limit]
    )
    return [
        {
            'origin': row['request__origin'],
            'destination': row['request__destination'],
            'delivery_count': row['delivery_count'],
            'on_time_rate': _percent(row['on_time'], row['delivery_count']),
            'avg_cost_variance': row['avg_cost_variance'] or 0.0,
        }
        for row in rows
    ]


@safe_query({'avg_invoice': 0.0, 'stddev_invoice': 0.0, 'delivery_count': 0})
def cost_spread(start, end):
    """Середній рахунок і його стандартне відхилення (по генеральній сукупності)"""
    invoices = [
        float(amount)
        for amount in deliveries_between(start, end)
        .filter(invoice_amount__gt=0)
        .values_list('invoice_amount', flat=True)
    ]
    if not invoices:
        return {'avg_invoice': 0.0, 'stddev_invoice': 0.0, 'delivery_count': 0}
    return {
        'avg_invoice': statistics.fmean(invoices),
        'stddev_invoice': statistics.pstdev(invoices),
        'delivery_count': len(invoices),
    }


@safe_query([])
def driver_patterns(start, end, min_ratings=2):
    """Водії з кількома оцінками за період"""
    rows = (
        ratings_between(start, end)
        .values('driver', 'driver__name')
        .annotate(
            rating_count=Count('id'),
            avg_rating=Avg('overall'),
            avg_punctuality=Avg('punctuality'),
            min_rating=Min('overall'),
        )
        .filter(rating_count__gte=min_ratings)
        .order_by('driver')
    )
    return [
        {
            'id': row['driver'],
            'name': row['driver__name'],
            'rating_count': row['rating_count'],
            'avg_rating': row['avg_rating'],
            'avg_punctuality': row['avg_punctuality'],
            'min_rating': row['min_rating'],
        }
        for row in rows
    ]


@safe_query([])
def delivery_hour_patterns(start, end, min_deliveries=5, limit=3):
    """Години забору з найгіршою часткою вчасних доставок"""
    rows = (
        deliveries_between(start, end)
        .annotate(hour=ExtractHour('actual_pickup_at'))
        .values('hour')
        .annotate(delivery_count=Count('id'), on_time=Count('id', filter=ON_TIME))
        .filter(delivery_count__gte=min_deliveries)
    )
    patterns = [
        {
            'hour': row['hour'],
            'delivery_count': row['delivery_count'],
            'on_time_rate': _percent(row['on_time'], row['delivery_count']),
        }
        for row in rows
    ]
    patterns.sort(key=lambda pattern: (pattern['on_time_rate'], pattern['hour']))
    return patterns[:limit]


@safe_query([])
def transporter_metrics(start, end):
    """Показники кожного водія-перевізника за період"""
    rows = (
        ratings_between(start, end)
        .filter(driver__type='transporter')
        .values('driver', 'driver__name', 'driver__transport_company')
        .annotate(
            total_deliveries=Count('delivery', distinct=True),
            rating_count=Count('id'),
            on_time=Count('id', filter=RATING_ON_TIME),
            cost_variance=Avg(Case(
                When(delivery__request__estimated_cost__gt=0, then=_cost_variance_expression('delivery__')),
                output_field=FloatField(),
            )),
            driver_rating=Avg('overall'),
            avg_punctuality=Avg('punctuality'),
            avg_professionalism=Avg('professionalism'),
            avg_delivery_quality=Avg('delivery_quality'),
            avg_communication=Avg('communication'),
        )
        .order_by('-total_deliveries', 'driver')
    )
    result = []
    for row in rows:
        # Якість: середнє з наявних вимірів, переведене у відсотки
        dimensions = [
            row[key] for key in ('avg_punctuality', 'avg_professionalism', 'avg_delivery_quality', 'avg_communication')
            if row[key] is not None
        ]
        quality = sum(dimensions) / len(dimensions) / 5 * 100 if dimensions else 0.0
        result.append({
            'id': row['driver'],
            'name': row['driver__name'],
            'transport_company': row['driver__transport_company'],
            'total_deliveries': row['total_deliveries'],
            'on_time_rate': _percent(row['on_time'], row['rating_count']),
            'cost_variance': row['cost_variance'] or 0.0,
            'driver_rating': row['driver_rating'] or 0.0,
            'quality_score': quality,
        })
    return result


@safe_query({})
def table_counts():
    return {
        'requests': TransportationRequest.objects.count(),
        'deliveries': Delivery.objects.count(),
        'drivers': Driver.objects.count(),
        'ratings': DriverRating.objects.count(),
    }
