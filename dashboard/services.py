import logging
from datetime import timedelta

from django.db import connection
from django.utils import timezone

from . import insights as rules
from . import queries
from .annotator import NullInsightAnnotator

logger = logging.getLogger(__name__)

# Ваги підсумкової оцінки перевізника
TRANSPORTER_WEIGHTS = {
    'on_time_rate': 0.30,
    'cost_efficiency': 0.25,
    'driver_rating': 0.20,
    'quality_score': 0.25,
}


def transporter_score(on_time_rate, cost_variance, driver_rating, quality_score):
    """Зважена оцінка перевізника в межах 0..100"""
    # Відхилення вартості перетворюємо на ефективність: -10% -> 110
    cost_efficiency = max(0.0, 100 - cost_variance)
    driver_percentage = driver_rating / 5 * 100
    score = (
        on_time_rate * TRANSPORTER_WEIGHTS['on_time_rate']
        + cost_efficiency * TRANSPORTER_WEIGHTS['cost_efficiency']
        + driver_percentage * TRANSPORTER_WEIGHTS['driver_rating']
        + quality_score * TRANSPORTER_WEIGHTS['quality_score']
    )
    return min(100.0, max(0.0, score))


class DashboardService:
    """Аналітика панелі керування; анотатор передається явно"""

    def __init__(self, annotator=None):
        self.annotator = annotator or NullInsightAnnotator()

    def _period_values(self, start, end):
        return {
            'on_time_delivery': queries.on_time_rate(start, end),
            'cost_variance': queries.cost_variance(start, end),
            'fleet_utilization': queries.fleet_utilization(start, end),
            'driver_performance': queries.driver_performance(start, end),
        }

    def kpi_metrics(self, start, end):
        """Чотири KPI з трендом відносно попереднього періоду такої ж довжини"""
        current = self._period_values(start, end)
        previous = self._period_values(*queries.previous_window(start, end))

        values = {
            'on_time_delivery': (current['on_time_delivery']['rate'], previous['on_time_delivery']['rate']),
            'cost_variance': (current['cost_variance']['variance'], previous['cost_variance']['variance']),
            'fleet_utilization': (current['fleet_utilization']['rate'], previous['fleet_utilization']['rate']),
            'driver_performance': (current['driver_performance']['average'], previous['driver_performance']['average']),
        }
        meta = {
            'on_time_delivery': ('on-time-delivery', 'Вчасні доставки', '%', rules.on_time_message),
            'cost_variance': ('cost-variance', 'Відхилення вартості', '%', rules.cost_message),
            'fleet_utilization': ('fleet-utilization', 'Завантаженість парку', '%', rules.utilization_message),
            'driver_performance': ('driver-performance', 'Оцінка водіїв', '/5', rules.performance_message),
        }

        metrics = []
        for key, (value, previous_value) in values.items():
            metric_id, title, unit, message = meta[key]
            change = queries.percent_change(value, previous_value)
            metrics.append({
                'id': metric_id,
                'title': title,
                'value': round(value, 1),
                'unit': unit,
                'trend': change,
                'comparison': {'change': change, 'period': 'попередній період'},
                'insight': message(value),
                'details': current[key],
            })
        return metrics

    def performance_trends(self, start, end):
        """Щоденні точки графіка; дні без доставок мають нульові значення"""
        days = queries.daily_breakdown(start, end)
        total_drivers = queries.fleet_utilization(start, end)['total_drivers']

        trends = []
        day = start
        while day <= end:
            values = days.get(day, {})
            active = values.get('active_drivers', 0)
            trends.append({
                'date': day.isoformat(),
                'date_formatted': day.strftime('%d.%m'),
                'on_time_delivery': round(values.get('on_time', 0.0), 1),
                'cost_variance': round(values.get('cost_variance', 0.0), 1),
                'fleet_utilization': round(active * 100.0 / total_drivers, 1) if total_drivers else 0.0,
                'driver_performance': round(values.get('rating', 0.0), 1),
            })
            day += timedelta(days=1)
        return trends

    def rule_insights(self, start, end):
        found = []
        found += rules.route_insights(queries.route_efficiency(start, end))
        found += rules.cost_insights(queries.cost_spread(start, end))
        found += rules.driver_insights(queries.driver_patterns(start, end))
        found += rules.hour_insights(queries.delivery_hour_patterns(start, end))
        return found

    def insights(self, start, end):
        found = self.rule_insights(start, end)
        return self.annotator.annotate(found, start.isoformat(), end.isoformat())

    def transporter_comparison(self, start, end):
        """Перевізники з підсумковою оцінкою, від кращого до гіршого"""
        previous = {
            row['id']: row
            for row in queries.transporter_metrics(*queries.previous_window(start, end))
        }

        transporters = []
        for row in queries.transporter_metrics(start, end):
            score = transporter_score(row['on_time_rate'], row['cost_variance'], row['driver_rating'], row['quality_score'])
            before = previous.get(row['id'])
            if before is not None:
                previous_score = transporter_score(
                    before['on_time_rate'], before['cost_variance'], before['driver_rating'], before['quality_score'],
                )
                trends = {
                    'score': queries.percent_change(score, previous_score),
                    'on_time_rate': queries.percent_change(row['on_time_rate'], before['on_time_rate']),
                    'cost_variance': queries.percent_change(row['cost_variance'], before['cost_variance']),
                }
            else:
                trends = {'score': 0, 'on_time_rate': 0, 'cost_variance': 0}

            transporters.append({
                'id': row['id'],
                'name': row['name'],
                'company': row['transport_company'] or row['name'],
                'total_deliveries': row['total_deliveries'],
                'score': round(score, 1),
                'score_trend': trends['score'],
                'on_time_rate': round(row['on_time_rate'], 1),
                'on_time_trend': trends['on_time_rate'],
                'cost_variance': round(row['cost_variance'], 1),
                'cost_trend': trends['cost_variance'],
                'driver_rating': round(row['driver_rating'], 1),
                'quality_score': round(row['quality_score'], 1),
            })

        transporters.sort(key=lambda item: (-item['score'], item['id']))
        return transporters

    def health(self):
        try:
            connection.ensure_connection()
            database = {'status': 'healthy', 'message': 'Зʼєднання з базою даних встановлено'}
        except Exception as exc:
            logger.exception('Database health check failed')
            database = {'status': 'unhealthy', 'message': str(exc)}

        counts = queries.table_counts()
        return {
            'database': database,
            'data_availability': {
                'status': 'healthy' if counts else 'unhealthy',
                'counts': counts,
            },
            'annotator': 'enabled' if self.annotator.available else 'disabled',
            'checked_at': timezone.now(),
        }
