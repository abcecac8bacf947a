import math
from datetime import date, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from django.db import DatabaseError
from django.test import TestCase, SimpleTestCase, Client, override_settings
from django.urls import reverse
from django.utils import timezone

from drivers.models import Driver
from logistics.models import Delivery, DriverRating, TransportationRequest
from . import queries
from .annotator import NullInsightAnnotator, OpenAIInsightAnnotator, build_annotator, parse_insights
from .insights import fallback_insights, insight
from .services import DashboardService, transporter_score

START = date(2026, 3, 1)
END = date(2026, 3, 31)


def at(day, hour, minute=0):
    return timezone.make_aware(datetime(2026, 3, day, hour, minute))


def make_driver(name, **kwargs):
    values = {
        'name': name,
        'type': 'transporter',
        'transport_company': f'{name} Транс',
        'phone': '+380501112233',
        'license_number': 'AA1234BB',
    }
    values.update(kwargs)
    return Driver.objects.create(**values)


def make_delivery(planned, actual, estimate, invoice, origin='Київ', destination='Львів', status='completed'):
    transport_request = TransportationRequest.objects.create(
        origin=origin,
        destination=destination,
        pickup_at=planned,
        truck_count=1,
        estimated_cost=estimate,
        status=status,
    )
    return Delivery.objects.create(
        request=transport_request,
        actual_pickup_at=actual,
        actual_truck_count=1,
        invoice_amount=invoice,
    )


def make_rating(delivery, driver, overall, punctuality=4):
    return DriverRating.objects.create(
        delivery=delivery,
        driver=driver,
        overall=overall,
        punctuality=punctuality,
        professionalism=4,
    )


def sample_insights():
    return [
        insight('route-optimization-1', 'Маршрут', 'Запізнення', 'high', 'Перегляньте графік'),
        insight('cost-route-1', 'Вартість', 'Перевитрати', 'high', 'Оцініть маршрут'),
        insight('driver-performance-7', 'Водій', 'Низька оцінка', 'high', 'Навчання'),
        insight('driver-punctuality-7', 'Водій', 'Запізнення', 'medium', 'Контроль'),
    ]


def chat_client(content=None, error=None):
    client = MagicMock()
    if error is not None:
        client.chat.completions.create.side_effect = error
    else:
        message = SimpleNamespace(content=content)
        client.chat.completions.create.return_value = SimpleNamespace(choices=[SimpleNamespace(message=message)])
    return client


VALID_RESPONSE = (
    '[{"id": "ai-extra-1", "title": "Пікові години", "description": "Ранкові забори запізнюються", '
    '"severity": "low", "recommendation": "Зсуньте графік"}]'
)


class PeriodMathTest(SimpleTestCase):
    def test_previous_window(self):
        self.assertEqual(queries.previous_window(START, END), (date(2026, 1, 29), date(2026, 2, 28)))
        self.assertEqual(queries.previous_window(START, START), (date(2026, 2, 28), date(2026, 2, 28)))

    def test_previous_window_same_length(self):
        previous_start, previous_end = queries.previous_window(START, END)
        self.assertEqual(previous_end - previous_start, END - START)

    def test_percent_change(self):
        self.assertEqual(queries.percent_change(110, 100), 10.0)
        self.assertEqual(queries.percent_change(50, -100), 150.0)
        self.assertEqual(queries.percent_change(80, 0), 0)
        self.assertEqual(queries.percent_change(80, None), 0)

    def test_transporter_score_bounds(self):
        self.assertEqual(transporter_score(100, -50, 5, 100), 100.0)
        self.assertEqual(transporter_score(0, 250, 0, 0), 0.0)
        self.assertAlmostEqual(transporter_score(80, 10, 4, 80), 82.5)


class EmptyDashboardTest(TestCase):
    def setUp(self):
        self.service = DashboardService()

    def test_kpi_without_data(self):
        metrics = self.service.kpi_metrics(START, END)
        self.assertEqual(
            [metric['id'] for metric in metrics],
            ['on-time-delivery', 'cost-variance', 'fleet-utilization', 'driver-performance'],
        )
        for metric in metrics:
            self.assertEqual(metric['value'], 0)
            self.assertFalse(math.isnan(metric['value']))
            self.assertEqual(metric['trend'], 0)

    def test_trends_without_data(self):
        trends = self.service.performance_trends(START, END)
        self.assertEqual(len(trends), 31)
        self.assertEqual(trends[0]['date'], '2026-03-01')
        self.assertEqual(trends[0]['date_formatted'], '01.03')
        self.assertEqual(trends[-1]['date'], '2026-03-31')
        for point in trends:
            for key in ('on_time_delivery', 'cost_variance', 'fleet_utilization', 'driver_performance'):
                self.assertEqual(point[key], 0)

    def test_other_views_without_data(self):
        self.assertEqual(self.service.insights(START, END), [])
        self.assertEqual(self.service.transporter_comparison(START, END), [])

    def test_failed_query_returns_default(self):
        with patch('dashboard.queries.deliveries_between', side_effect=DatabaseError('boom')):
            with self.assertLogs('dashboard.queries', level='ERROR'):
                result = queries.on_time_rate(START, END)
                result['rate'] = 99
                again = queries.on_time_rate(START, END)
        self.assertEqual(again, {'rate': 0.0, 'total': 0, 'on_time': 0})


class DashboardMetricsTest(TestCase):
    def setUp(self):
        self.first = make_driver('Іван')
        self.second = make_driver('Олег')
        # Вчасно, рахунок на 10% вищий
        self.on_time = make_delivery(at(10, 10), at(10, 9, 50), Decimal('1000'), Decimal('1100'))
        # Запізнення на годину, рахунок на 20% вищий
        self.late = make_delivery(at(10, 10), at(10, 11), Decimal('1000'), Decimal('1200'))
        make_rating(self.on_time, self.first, overall=4, punctuality=2)
        make_rating(self.late, self.first, overall=5, punctuality=2)

        # Не враховуються: заплановані та видалені заявки
        skipped = make_delivery(at(11, 10), at(11, 12), Decimal('1000'), Decimal('5000'), status='planned')
        make_rating(skipped, self.second, overall=1)
        deleted = make_delivery(at(12, 10), at(12, 12), Decimal('1000'), Decimal('5000'), status='processing')
        deleted.request.soft_delete()

        self.service = DashboardService()

    def test_kpi_values(self):
        metrics = {metric['id']: metric for metric in self.service.kpi_metrics(START, END)}
        self.assertEqual(metrics['on-time-delivery']['value'], 50.0)
        self.assertEqual(metrics['on-time-delivery']['details'], {'rate': 50.0, 'total': 2, 'on_time': 1})
        self.assertEqual(metrics['cost-variance']['value'], 15.0)
        self.assertEqual(metrics['fleet-utilization']['value'], 50.0)
        self.assertEqual(metrics['driver-performance']['value'], 4.5)
        self.assertEqual(metrics['driver-performance']['unit'], '/5')

    def test_trend_against_previous_period(self):
        make_delivery(
            timezone.make_aware(datetime(2026, 2, 10, 10)),
            timezone.make_aware(datetime(2026, 2, 10, 10)),
            Decimal('1000'), Decimal('1000'),
        )
        metrics = {metric['id']: metric for metric in self.service.kpi_metrics(START, END)}
        # 50% проти 100% у попередньому періоді
        self.assertEqual(metrics['on-time-delivery']['trend'], -50.0)
        self.assertEqual(metrics['on-time-delivery']['comparison']['change'], -50.0)

    def test_daily_trends(self):
        trends = self.service.performance_trends(date(2026, 3, 9), date(2026, 3, 11))
        self.assertEqual([point['date'] for point in trends], ['2026-03-09', '2026-03-10', '2026-03-11'])
        busy = trends[1]
        self.assertEqual(busy['on_time_delivery'], 50.0)
        self.assertEqual(busy['cost_variance'], 15.0)
        self.assertEqual(busy['fleet_utilization'], 50.0)
        self.assertEqual(busy['driver_performance'], 4.5)
        self.assertEqual(trends[2]['driver_performance'], 0)

    def test_rule_insights(self):
        ids = [item['id'] for item in self.service.rule_insights(START, END)]
        self.assertEqual(ids, ['route-optimization-1', 'cost-route-1', f'driver-punctuality-{self.first.pk}'])

        route = self.service.rule_insights(START, END)[0]
        self.assertEqual(route['severity'], 'high')

    def test_transporter_comparison(self):
        other = make_delivery(at(15, 10), at(15, 10), Decimal('1000'), Decimal('1000'))
        make_rating(other, self.second, overall=5, punctuality=5)

        transporters = self.service.transporter_comparison(START, END)
        self.assertEqual([item['id'] for item in transporters], [self.second.pk, self.first.pk])
        self.assertGreaterEqual(transporters[0]['score'], transporters[1]['score'])
        first = transporters[1]
        self.assertEqual(first['total_deliveries'], 2)
        self.assertEqual(first['on_time_rate'], 50.0)
        self.assertEqual(first['cost_variance'], 15.0)
        self.assertEqual(first['company'], 'Іван Транс')

    def test_in_house_drivers_not_compared(self):
        in_house = Driver.objects.create(
            name='Штатний',
            type='in_house',
            employee_id='EMP-1',
            department='Доставка',
            hire_date=date(2024, 1, 1),
        )
        make_rating(self.on_time, in_house, overall=5)
        ids = [item['id'] for item in self.service.transporter_comparison(START, END)]
        self.assertNotIn(in_house.pk, ids)

    def test_health(self):
        health = self.service.health()
        self.assertEqual(health['database']['status'], 'healthy')
        self.assertEqual(health['data_availability']['counts']['drivers'], 2)
        self.assertEqual(health['annotator'], 'disabled')


class AnnotatorTest(SimpleTestCase):
    def test_null_annotator_is_identity(self):
        insights = sample_insights()
        self.assertEqual(NullInsightAnnotator().annotate(insights, '2026-03-01', '2026-03-31'), insights)

    def test_service_error_returns_original(self):
        annotator = OpenAIInsightAnnotator(client=chat_client(error=TimeoutError('timeout')))
        with self.assertLogs('dashboard.annotator', level='WARNING'):
            result = annotator.annotate(sample_insights(), '2026-03-01', '2026-03-31')
        self.assertEqual(result, sample_insights())

    def test_empty_response_returns_original(self):
        annotator = OpenAIInsightAnnotator(client=chat_client(content='  '))
        with self.assertLogs('dashboard.annotator', level='WARNING'):
            result = annotator.annotate(sample_insights(), '2026-03-01', '2026-03-31')
        self.assertEqual(result, sample_insights())

    def test_unparseable_response_uses_fallback(self):
        annotator = OpenAIInsightAnnotator(client=chat_client(content='Вибачте, не можу допомогти'))
        with self.assertLogs('dashboard.annotator', level='WARNING'):
            result = annotator.annotate(sample_insights(), '2026-03-01', '2026-03-31')
        self.assertEqual(result[:2], sample_insights()[:2])
        self.assertEqual([item['id'] for item in result[2:]], ['ai-pattern-1', 'ai-pattern-2', 'ai-pattern-3'])

    def test_valid_response_appended(self):
        client = chat_client(content=VALID_RESPONSE)
        annotator = OpenAIInsightAnnotator(model='gpt-4o-mini', client=client)
        result = annotator.annotate(sample_insights(), '2026-03-01', '2026-03-31')

        self.assertEqual(len(result), 3)
        self.assertEqual(result[:2], sample_insights()[:2])
        self.assertEqual(result[2]['id'], 'ai-extra-1')

        kwargs = client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs['model'], 'gpt-4o-mini')
        self.assertIn('2026-03-01', kwargs['messages'][1]['content'])

    def test_parse_fenced_json(self):
        parsed = parse_insights(f'Ось результат:\n```json\n{VALID_RESPONSE}\n```')
        self.assertEqual(parsed[0]['severity'], 'low')

    def test_parse_rejects_bad_items(self):
        self.assertIsNone(parse_insights(VALID_RESPONSE.replace('"low"', '"critical"')))
        self.assertIsNone(parse_insights('[{"id": "x", "title": "без інших ключів"}]'))
        self.assertIsNone(parse_insights('[1, 2, 3]'))
        self.assertIsNone(parse_insights('{"id": "x"}'))
        self.assertIsNone(parse_insights(''))

    def test_fallback_rules(self):
        self.assertEqual(fallback_insights([]), [])
        only_cost = [insight('cost-variance-high', 'Вартість', 'Розкид', 'medium', 'Стандартизуйте')]
        self.assertEqual([item['id'] for item in fallback_insights(only_cost)], ['ai-pattern-2'])

    @override_settings(OPENAI_API_KEY='')
    def test_build_without_key(self):
        self.assertIsInstance(build_annotator(), NullInsightAnnotator)

    @override_settings(OPENAI_API_KEY='sk-test', INSIGHT_MODEL='gpt-4o-mini', INSIGHT_TIMEOUT_SECONDS=5)
    def test_build_with_key(self):
        annotator = build_annotator()
        self.assertIsInstance(annotator, OpenAIInsightAnnotator)
        self.assertTrue(annotator.available)
        self.assertEqual(annotator.model, 'gpt-4o-mini')


@override_settings(OPENAI_API_KEY='')
class DashboardApiTest(TestCase):
    def setUp(self):
        self.client = Client()

    def test_kpi_default_period(self):
        response = self.client.get(reverse('dashboard:kpi'))
        self.assertEqual(response.status_code, 200)
        period = response.json()['data']['period']
        end = timezone.localdate()
        self.assertEqual(period['end_date'], end.isoformat())
        self.assertEqual(period['start_date'], (end - timedelta(days=29)).isoformat())

    def test_camel_case_params(self):
        response = self.client.get(reverse('dashboard:trends'), {'startDate': '2026-03-01', 'endDate': '2026-03-07'})
        self.assertEqual(response.status_code, 200)
        data = response.json()['data']
        self.assertEqual(data['period'], {'start_date': '2026-03-01', 'end_date': '2026-03-07'})
        self.assertEqual(len(data['trends']), 7)

    def test_end_before_start(self):
        response = self.client.get(reverse('dashboard:kpi'), {'start_date': '2026-03-10', 'end_date': '2026-03-01'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('end_date', response.json()['detail'])

    def test_range_limit(self):
        response = self.client.get(reverse('dashboard:kpi'), {'start_date': '2026-01-01', 'end_date': '2026-06-01'})
        self.assertEqual(response.status_code, 400)

        response = self.client.get(reverse('dashboard:kpi'), {'start_date': '2026-01-01', 'end_date': '2026-04-01'})
        self.assertEqual(response.status_code, 200)

    def test_invalid_date(self):
        response = self.client.get(reverse('dashboard:kpi'), {'start_date': 'not-a-date'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('start_date', response.json()['detail'])

    def test_insights_without_annotator(self):
        response = self.client.get(reverse('dashboard:insights'), {'start_date': '2026-03-01', 'end_date': '2026-03-31'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['insights'], [])

    def test_transporter_comparison(self):
        response = self.client.get(reverse('dashboard:transporter_comparison'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['transporters'], [])

    def test_health(self):
        response = self.client.get(reverse('dashboard:health'))
        data = response.json()['data']
        self.assertEqual(data['database']['status'], 'healthy')
        self.assertEqual(data['annotator'], 'disabled')
