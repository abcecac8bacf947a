import json
import random
from datetime import datetime
from decimal import Decimal
from unittest.mock import patch

from django.core.exceptions import ValidationError
from django.db.models import ProtectedError
from django.db.models.query import QuerySet
from django.test import TestCase, SimpleTestCase, Client
from django.urls import reverse
from django.utils import timezone

from logistics.exceptions import DriverInUse
from logistics.models import Delivery, DriverRating, TransportationRequest

from .models import Driver
from .ratings import (
    analyze_recent_performance,
    assess_risk,
    average_overall,
    calculate_summary,
    generate_recommendations,
)

PICKUP = timezone.make_aware(datetime(2026, 3, 10, 10, 0))


def make_transporter(name='Іван Петренко', **kwargs):
    values = {
        'name': name,
        'type': 'transporter',
        'transport_company': 'Нова Логістика',
        'phone': '+380501112233',
        'license_number': 'AA1234BB',
    }
    values.update(kwargs)
    return Driver.objects.create(**values)


def rate(driver, overall=5, punctuality=4, professionalism=5, pickup=PICKUP, **extra):
    """Окрема заявка з доставкою та однією оцінкою водія"""
    transport_request = TransportationRequest.objects.create(
        origin='Київ',
        destination='Львів',
        pickup_at=pickup,
        truck_count=1,
        status='completed',
    )
    delivery = Delivery.objects.create(
        request=transport_request,
        actual_pickup_at=pickup,
        actual_truck_count=1,
        invoice_amount=Decimal('1000.00'),
    )
    return DriverRating.objects.create(
        delivery=delivery,
        driver=driver,
        overall=overall,
        punctuality=punctuality,
        professionalism=professionalism,
        **extra
    )


def scores(overall, punctuality=None, communication=None):
    return {
        'overall': overall,
        'punctuality': punctuality if punctuality is not None else overall,
        'professionalism': overall,
        'communication': communication,
    }


class RatingSummaryTest(SimpleTestCase):
    def test_empty_history(self):
        summary = calculate_summary([])
        self.assertEqual(summary['total_ratings'], 0)
        for key in ('average_overall', 'average_punctuality', 'average_professionalism',
                    'average_delivery_quality', 'average_communication', 'average_safety'):
            self.assertEqual(summary[key], 0.0)

    def test_order_does_not_matter(self):
        ratings = [scores(value) for value in (1, 2, 2, 3, 4, 4, 4, 5, 5, 3, 1, 5)]
        expected = calculate_summary(ratings)
        shuffled = list(ratings)
        for seed in range(5):
            random.Random(seed).shuffle(shuffled)
            self.assertEqual(calculate_summary(shuffled), expected)

    def test_half_up_rounding(self):
        # 4.25 округлюється вгору, а не до парного
        self.assertEqual(average_overall([4, 4, 4, 5]), 4.3)
        self.assertEqual(average_overall([4, 5]), 4.5)
        self.assertEqual(average_overall([2, 3, 3]), 2.7)
        self.assertEqual(average_overall([1, 1, 2]), 1.3)

    def test_empty_overall(self):
        self.assertEqual(average_overall([]), 0.0)

    def test_missing_optional_dimensions_excluded(self):
        summary = calculate_summary([scores(4, communication=4), scores(2), scores(3)])
        self.assertEqual(summary['average_communication'], 4.0)
        self.assertEqual(summary['average_overall'], 3.0)
        self.assertEqual(summary['average_safety'], 0.0)

    def test_model_instances(self):
        ratings = [DriverRating(overall=5, punctuality=4, professionalism=5),
                   DriverRating(overall=4, punctuality=4, professionalism=3)]
        summary = calculate_summary(ratings)
        self.assertEqual(summary['average_overall'], 4.5)
        self.assertEqual(summary['average_professionalism'], 4.0)
        self.assertEqual(summary['total_ratings'], 2)


class RecentPerformanceTest(SimpleTestCase):
    def test_no_history(self):
        self.assertEqual(analyze_recent_performance([])['trend'], 'insufficient_data')

    def test_new_driver(self):
        result = analyze_recent_performance([scores(5), scores(4)])
        self.assertEqual(result['trend'], 'new_driver')
        self.assertEqual(result['average_rating'], 4.5)

    def test_trends(self):
        improving = [scores(5)] * 5 + [scores(3)] * 5
        declining = [scores(3)] * 5 + [scores(5)] * 5
        stable = [scores(4)] * 10
        self.assertEqual(analyze_recent_performance(improving)['trend'], 'improving')
        self.assertEqual(analyze_recent_performance(declining)['trend'], 'declining')
        self.assertEqual(analyze_recent_performance(stable)['trend'], 'stable')

    def test_slight_changes(self):
        # 4.2 проти 4.0
        slightly = [scores(5), scores(4), scores(4), scores(4), scores(4)] + [scores(4)] * 3
        self.assertEqual(analyze_recent_performance(slightly)['trend'], 'slightly_improving')


class RecommendationsTest(SimpleTestCase):
    def test_no_ratings_no_recommendations(self):
        self.assertEqual(generate_recommendations(calculate_summary([])), [])

    def test_low_scores(self):
        summary = calculate_summary([scores(2, punctuality=2, communication=2)])
        categories = [item['category'] for item in generate_recommendations(summary)]
        self.assertEqual(categories, ['performance', 'punctuality', 'communication'])

    def test_recognition(self):
        summary = calculate_summary([scores(5)])
        self.assertEqual(generate_recommendations(summary)[0]['category'], 'recognition')

    def test_risk_levels(self):
        self.assertEqual(assess_risk(calculate_summary([]))['level'], 'low')
        self.assertEqual(assess_risk(calculate_summary([scores(3)]))['level'], 'medium')

        risky = calculate_summary([scores(2, punctuality=2)])
        result = assess_risk(risky)
        self.assertEqual(result['level'], 'high')
        self.assertEqual(len(result['factors']), 2)

    def test_negative_comments_raise_risk(self):
        ratings = [dict(scores(5), comments='Запізнився на годину'), scores(5)]
        result = assess_risk(calculate_summary(ratings), ratings)
        self.assertEqual(result['level'], 'medium')


class DriverModelTest(TestCase):
    def test_variant_fields_required(self):
        driver = Driver(name='Без компанії', type='transporter', phone='+380501112233')
        with self.assertRaises(ValidationError) as ctx:
            driver.full_clean()
        self.assertIn('transport_company', ctx.exception.message_dict)
        self.assertIn('license_number', ctx.exception.message_dict)

    def test_profile_has_only_variant_fields(self):
        driver = Driver.objects.create(
            name='Марія Шевченко',
            type='in_house',
            employee_id='EMP-007',
            department='Доставка',
            hire_date=datetime(2023, 5, 1).date(),
        )
        self.assertEqual(set(driver.profile), {'employee_id', 'department', 'hire_date'})

    def test_delete_with_ratings_is_blocked(self):
        driver = make_transporter()
        rate(driver)
        with self.assertRaises(DriverInUse) as ctx:
            driver.delete()
        self.assertEqual(ctx.exception.detail, {'ratings_count': 1})
        self.assertTrue(Driver.objects.filter(pk=driver.pk).exists())

    def test_delete_race_with_new_rating(self):
        driver = make_transporter()
        rate(driver)
        # Перевірка не бачить оцінку, а видалення натрапляє на PROTECT
        with patch.object(QuerySet, 'exists', return_value=False):
            with self.assertRaises(DriverInUse) as ctx:
                driver.delete()
        self.assertIsInstance(ctx.exception.__cause__, ProtectedError)
        self.assertEqual(ctx.exception.detail, {'ratings_count': 1})
        self.assertTrue(Driver.objects.filter(pk=driver.pk).exists())

    def test_delete_without_ratings(self):
        driver = make_transporter()
        driver.delete()
        self.assertFalse(Driver.objects.exists())

    def test_calculate_overall_rating(self):
        driver = make_transporter()
        self.assertEqual(driver.calculate_overall_rating(), 0.0)
        for overall in (4, 4, 4, 5):
            rate(driver, overall=overall)
        self.assertEqual(driver.calculate_overall_rating(), 4.3)

    def test_new_driver_statistics(self):
        driver = make_transporter()
        self.assertEqual(driver.overall_rating, 0)
        self.assertEqual(driver.total_deliveries, 0)
        self.assertIsNone(driver.last_delivery)


class DriverApiTest(TestCase):
    def setUp(self):
        self.client = Client()

    def post_json(self, url, payload):
        return self.client.post(url, data=json.dumps(payload), content_type='application/json')

    def test_create_transporter(self):
        response = self.post_json(reverse('drivers:drivers'), {
            'name': 'Іван Петренко',
            'type': 'transporter',
            'transport_company': 'Нова Логістика',
            'phone': '+380501112233',
            'license_number': 'AA1234BB',
            'employee_id': 'зайве поле',
        })
        self.assertEqual(response.status_code, 201)
        data = response.json()['data']
        self.assertEqual(data['transport_company'], 'Нова Логістика')
        self.assertEqual(data['overall_rating'], 0.0)
        self.assertNotIn('employee_id', data)
        self.assertEqual(Driver.objects.get().employee_id, '')

    def test_create_in_house_requires_fields(self):
        response = self.post_json(reverse('drivers:drivers'), {'name': 'Марія', 'type': 'in_house'})
        self.assertEqual(response.status_code, 400)
        detail = response.json()['detail']
        for field in ('employee_id', 'department', 'hire_date'):
            self.assertIn(field, detail)

    def test_create_invalid_type(self):
        response = self.post_json(reverse('drivers:drivers'), {'name': 'Хтось', 'type': 'freelancer'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('type', response.json()['detail'])

    def test_list_hides_archived(self):
        make_transporter()
        make_transporter(name='Архівний', is_archived=True)

        data = self.client.get(reverse('drivers:drivers')).json()['data']
        self.assertEqual([item['name'] for item in data['drivers']], ['Іван Петренко'])

        data = self.client.get(reverse('drivers:drivers'), {'include_archived': 'true'}).json()['data']
        self.assertEqual(data['pagination']['total'], 2)

    def test_search(self):
        make_transporter()
        make_transporter(name='Олег Коваль', transport_company='Швидкий Шлях')
        data = self.client.get(reverse('drivers:drivers'), {'search': 'Шлях'}).json()['data']
        self.assertEqual([item['name'] for item in data['drivers']], ['Олег Коваль'])

    def test_patch_keeps_other_fields(self):
        driver = make_transporter()
        response = self.client.patch(
            reverse('drivers:driver_detail', args=[driver.pk]),
            data=json.dumps({'phone': '+380999999999'}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 200)
        driver.refresh_from_db()
        self.assertEqual(driver.phone, '+380999999999')
        self.assertEqual(driver.transport_company, 'Нова Логістика')

    def test_delete_guard(self):
        driver = make_transporter()
        rate(driver)
        response = self.client.delete(reverse('drivers:driver_detail', args=[driver.pk]))
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body['code'], 'DRIVER_IN_USE')
        self.assertEqual(body['detail']['ratings_count'], 1)

    def test_delete_unrated_driver(self):
        driver = make_transporter()
        response = self.client.delete(reverse('drivers:driver_detail', args=[driver.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get(reverse('drivers:driver_detail', args=[driver.pk])).status_code, 404)

    def test_archive(self):
        driver = make_transporter()
        rate(driver)
        url = reverse('drivers:archive', args=[driver.pk])

        response = self.post_json(url, {})
        self.assertTrue(response.json()['data']['is_archived'])

        response = self.post_json(url, {'is_archived': False})
        self.assertFalse(response.json()['data']['is_archived'])

        response = self.post_json(url, {'is_archived': 'yes'})
        self.assertEqual(response.status_code, 400)

    def test_detail_includes_summary(self):
        driver = make_transporter()
        rate(driver, overall=4)
        rate(driver, overall=5)
        data = self.client.get(reverse('drivers:driver_detail', args=[driver.pk])).json()['data']
        self.assertEqual(data['rating_summary']['average_overall'], 4.5)
        self.assertEqual(data['rating_summary']['total_ratings'], 2)

    def test_ratings_history(self):
        driver = make_transporter()
        rate(driver, overall=3, pickup=PICKUP)
        rate(driver, overall=5, pickup=PICKUP.replace(day=20))

        data = self.client.get(reverse('drivers:ratings', args=[driver.pk])).json()['data']
        self.assertEqual([item['overall'] for item in data['ratings']], [5, 3])
        self.assertTrue(data['ratings'][0]['request_number'].startswith('REQ-'))
        self.assertEqual(data['summary']['average_overall'], 4.0)

    def test_insights(self):
        driver = make_transporter()
        data = self.client.get(reverse('drivers:insights', args=[driver.pk])).json()['data']
        self.assertEqual(data['recent_performance']['trend'], 'insufficient_data')
        self.assertEqual(data['recommendations'], [])
        self.assertEqual(data['risk_assessment']['level'], 'low')

        rate(driver, overall=2, punctuality=2)
        data = self.client.get(reverse('drivers:insights', args=[driver.pk])).json()['data']
        self.assertEqual(data['recent_performance']['trend'], 'new_driver')
        self.assertEqual(data['risk_assessment']['level'], 'high')

    def test_recent_drivers(self):
        first = make_transporter(name='Перший')
        second = make_transporter(name='Другий')
        Driver.objects.filter(pk=first.pk).update(last_delivery=PICKUP)
        Driver.objects.filter(pk=second.pk).update(last_delivery=PICKUP.replace(day=20))
        make_transporter(name='Без доставок')

        data = self.client.get(reverse('drivers:recent')).json()['data']
        self.assertEqual([item['name'] for item in data], ['Другий', 'Перший', 'Без доставок'])

    def test_unknown_driver(self):
        response = self.client.get(reverse('drivers:driver_detail', args=[404]))
        self.assertEqual(response.status_code, 404)
