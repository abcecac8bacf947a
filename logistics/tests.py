import json
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import call, patch

from django.db import IntegrityError, OperationalError
from django.test import TestCase, TransactionTestCase, Client, override_settings
from django.urls import reverse
from django.utils import timezone

from drivers.models import Driver
from . import services
from .exceptions import (
    AlreadyLogged,
    Contention,
    DriverNotFound,
    InvalidState,
    NotFound,
    ValidationFailure,
    is_lock_contention,
)
from .forms import validate_delivery_payload
from .models import Delivery, DriverRating, TransportationRequest, calculate_performance

PICKUP = timezone.make_aware(datetime(2026, 3, 10, 10, 0))


def make_request(**kwargs):
    values = {
        'origin': 'Київ',
        'destination': 'Львів',
        'pickup_at': PICKUP,
        'truck_count': 2,
        'truck_type': 'box',
        'estimated_cost': Decimal('5000.00'),
        'urgency_level': 'medium',
    }
    values.update(kwargs)
    return TransportationRequest.objects.create(**values)


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


def delivery_payload(drivers, invoice='5000.00', pickup='2026-03-10T10:00:00'):
    return {
        'actual_pickup_at': pickup,
        'actual_truck_count': 2,
        'invoice_amount': invoice,
        'notes': 'Без зауважень',
        'drivers': drivers,
    }


def rated(driver, punctuality=4, professionalism=5, overall=5, **extra):
    rating = {'punctuality': punctuality, 'professionalism': professionalism, 'overall': overall}
    rating.update(extra)
    return {'driver_id': driver.pk, 'rating': rating}


def log(request_obj, drivers, **kwargs):
    delivery_data, assignments = validate_delivery_payload(delivery_payload(drivers, **kwargs))
    return services.log_delivery(request_obj.pk, delivery_data, assignments)


def lock_error(**attributes):
    error = OperationalError('database is locked')
    for name, value in attributes.items():
        setattr(error, name, value)
    return error


class TransportationRequestModelTest(TestCase):
    def test_request_number_sequence(self):
        year = timezone.now().year
        first = make_request()
        second = make_request()
        self.assertEqual(first.request_number, f'REQ-{year}-001')
        self.assertEqual(second.request_number, f'REQ-{year}-002')

    def test_request_number_counts_deleted_requests(self):
        year = timezone.now().year
        first = make_request()
        first.soft_delete()
        self.assertEqual(make_request().request_number, f'REQ-{year}-002')

    def test_request_number_collision_takes_next(self):
        year = timezone.now().year
        make_request()
        taken = f'REQ-{year}-001'
        # Інший процес встиг зайняти номер між читанням і вставкою
        with patch.object(TransportationRequest, 'next_request_number', side_effect=[taken, f'REQ-{year}-002']):
            transport_request = make_request()
        self.assertEqual(transport_request.request_number, f'REQ-{year}-002')
        self.assertEqual(TransportationRequest.all_objects.count(), 2)

    def test_request_number_allocation_gives_up(self):
        year = timezone.now().year
        make_request()
        with patch.object(TransportationRequest, 'next_request_number', return_value=f'REQ-{year}-001'):
            with self.assertRaises(Contention) as ctx:
                make_request()
        self.assertEqual(ctx.exception.detail['attempts'], TransportationRequest.REQUEST_NUMBER_ATTEMPTS)
        self.assertEqual(TransportationRequest.all_objects.count(), 1)

    def test_request_number_after_999(self):
        year = timezone.now().year
        make_request(request_number=f'REQ-{year}-999')
        self.assertEqual(make_request().request_number, f'REQ-{year}-1000')
        self.assertEqual(make_request().request_number, f'REQ-{year}-1001')

    def test_new_request_is_planned(self):
        self.assertEqual(make_request().status, 'planned')

    def test_soft_delete_hides_request(self):
        transport_request = make_request()
        transport_request.soft_delete()
        self.assertFalse(TransportationRequest.objects.filter(pk=transport_request.pk).exists())
        self.assertTrue(TransportationRequest.all_objects.filter(pk=transport_request.pk).exists())

    def test_completed_request_cannot_be_deleted(self):
        transport_request = make_request(status='completed')
        with self.assertRaises(InvalidState):
            transport_request.soft_delete()
        transport_request.refresh_from_db()
        self.assertIsNone(transport_request.deleted_at)

    def test_transitions(self):
        transport_request = make_request()
        self.assertTrue(transport_request.can_transition_to('processing'))
        self.assertFalse(transport_request.can_transition_to('completed'))
        transport_request.status = 'completed'
        for status in ('planned', 'processing', 'cancelled'):
            self.assertFalse(transport_request.can_transition_to(status))

    def test_ensure_status_names_required_state(self):
        transport_request = make_request()
        with self.assertRaises(InvalidState) as ctx:
            transport_request.ensure_status('processing')
        self.assertEqual(ctx.exception.detail, {'current_status': 'planned', 'required_status': ['processing']})


class PerformanceMetricsTest(TestCase):
    def grade(self, delay=0, trucks=(2, 2), cost=(Decimal('1000'), Decimal('1000'))):
        return calculate_performance(
            planned_pickup=PICKUP,
            actual_pickup=PICKUP + timedelta(minutes=delay),
            planned_trucks=trucks[0],
            actual_trucks=trucks[1],
            estimated_cost=cost[0],
            invoice_amount=cost[1],
        )

    def test_grades_by_delay(self):
        self.assertEqual(self.grade(delay=0)['performance_grade'], 'Excellent')
        self.assertEqual(self.grade(delay=20)['performance_grade'], 'Good')
        self.assertEqual(self.grade(delay=45)['performance_grade'], 'Fair')
        self.assertEqual(self.grade(delay=61)['performance_grade'], 'Poor')

    def test_grades_by_cost_and_trucks(self):
        self.assertEqual(self.grade(cost=(Decimal('1000'), Decimal('1200')))['performance_grade'], 'Fair')
        self.assertEqual(self.grade(trucks=(4, 7))['performance_grade'], 'Poor')

    def test_variance_values(self):
        metrics = self.grade(delay=-5, trucks=(4, 5), cost=(Decimal('1000'), Decimal('950')))
        self.assertEqual(metrics['delay_minutes'], -5)
        self.assertEqual(metrics['truck_variance'], 1)
        self.assertEqual(metrics['truck_variance_percentage'], 25.0)
        self.assertEqual(metrics['cost_variance'], -50.0)
        self.assertEqual(metrics['cost_variance_percentage'], -5.0)

    def test_missing_estimate(self):
        metrics = self.grade(cost=(None, Decimal('800')))
        self.assertEqual(metrics['cost_variance_percentage'], 0.0)

    def test_request_without_delivery(self):
        self.assertIsNone(make_request().performance_metrics())


class DeliveryWorkflowTest(TestCase):
    def setUp(self):
        self.request_obj = make_request()
        self.driver = make_transporter()

    def test_happy_path(self):
        result = log(self.request_obj, [rated(self.driver)])

        self.request_obj.refresh_from_db()
        self.assertEqual(self.request_obj.status, 'processing')
        self.assertEqual(Delivery.objects.filter(request=self.request_obj).count(), 1)
        rating = DriverRating.objects.get(delivery=result['delivery'])
        self.assertEqual(rating.overall, 5)
        self.assertEqual(result['drivers'], [self.driver])

        confirmed = services.confirm_completion(self.request_obj.pk)
        self.assertEqual(confirmed, {'request_id': self.request_obj.pk, 'status': 'completed'})
        self.request_obj.refresh_from_db()
        self.assertEqual(self.request_obj.status, 'completed')

    def test_retry_replaces_previous_attempt(self):
        other = make_transporter(name='Олег Коваль', license_number='BB9999CC')
        log(self.request_obj, [rated(self.driver), rated(other)], invoice='5000.00')
        log(self.request_obj, [rated(self.driver, overall=3)], invoice='5200.00')

        deliveries = Delivery.objects.filter(request=self.request_obj)
        self.assertEqual(deliveries.count(), 1)
        delivery = deliveries.get()
        self.assertEqual(delivery.invoice_amount, Decimal('5200.00'))
        self.assertEqual(list(delivery.ratings.values_list('driver_id', 'overall')), [(self.driver.pk, 3)])
        self.assertEqual(DriverRating.objects.count(), 1)

    def test_double_confirm_fails(self):
        log(self.request_obj, [rated(self.driver)])
        services.confirm_completion(self.request_obj.pk)
        with self.assertRaises(InvalidState) as ctx:
            services.confirm_completion(self.request_obj.pk)
        self.assertEqual(ctx.exception.current, 'completed')
        self.assertEqual(ctx.exception.required, ('processing',))

    def test_confirm_planned_fails_without_mutation(self):
        updated_at = self.request_obj.updated_at
        with self.assertRaises(InvalidState):
            services.confirm_completion(self.request_obj.pk)
        self.request_obj.refresh_from_db()
        self.assertEqual(self.request_obj.status, 'planned')
        self.assertEqual(self.request_obj.updated_at, updated_at)

    def test_log_after_completion_fails(self):
        log(self.request_obj, [rated(self.driver)], invoice='5000.00')
        services.confirm_completion(self.request_obj.pk)
        with self.assertRaises(InvalidState):
            log(self.request_obj, [rated(self.driver)], invoice='9999.00')

        self.request_obj.refresh_from_db()
        self.assertEqual(self.request_obj.status, 'completed')
        self.assertEqual(Delivery.objects.get(request=self.request_obj).invoice_amount, Decimal('5000.00'))

    def test_cancelled_request_cannot_be_logged(self):
        services.cancel(self.request_obj.pk)
        with self.assertRaises(InvalidState):
            log(self.request_obj, [rated(self.driver)])

    def test_existing_delivery_while_planned(self):
        Delivery.objects.create(
            request=self.request_obj,
            actual_pickup_at=PICKUP,
            actual_truck_count=2,
            invoice_amount=Decimal('100.00'),
        )
        with self.assertRaises(AlreadyLogged):
            log(self.request_obj, [rated(self.driver)])

    def test_unknown_request(self):
        delivery_data, assignments = validate_delivery_payload(delivery_payload([rated(self.driver)]))
        with self.assertRaises(NotFound):
            services.log_delivery(99999, delivery_data, assignments)

    def test_unknown_driver_rolls_back(self):
        with self.assertRaises(DriverNotFound) as ctx:
            log(self.request_obj, [rated(self.driver), {'driver_id': 4242, 'rating': {
                'punctuality': 3, 'professionalism': 3, 'overall': 3,
            }}])
        self.assertEqual(ctx.exception.status_code, 404)
        self.request_obj.refresh_from_db()
        self.assertEqual(self.request_obj.status, 'planned')
        self.assertFalse(Delivery.objects.exists())

    def test_archived_driver_rejected(self):
        self.driver.is_archived = True
        self.driver.save()
        with self.assertRaises(ValidationFailure):
            log(self.request_obj, [rated(self.driver)])

    def test_new_driver_created_inline(self):
        log(self.request_obj, [{
            'name': 'Марія Шевченко',
            'type': 'in_house',
            'employee_id': 'EMP-007',
            'department': 'Доставка',
            'hire_date': '2023-05-01',
            'punctuality': 5,
            'professionalism': 4,
            'overall': 4,
        }])
        driver = Driver.objects.get(name='Марія Шевченко')
        self.assertEqual(driver.type, 'in_house')
        self.assertEqual(driver.ratings.get().overall, 4)

    def test_statistics_refreshed_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            log(self.request_obj, [rated(self.driver, overall=4)])

        self.driver.refresh_from_db()
        self.assertEqual(self.driver.overall_rating, Decimal('4.0'))
        self.assertEqual(self.driver.total_deliveries, 1)
        self.assertIsNotNone(self.driver.last_delivery)

    def test_relog_does_not_double_count_deliveries(self):
        with self.captureOnCommitCallbacks(execute=True):
            log(self.request_obj, [rated(self.driver, overall=2)])
        with self.captureOnCommitCallbacks(execute=True):
            log(self.request_obj, [rated(self.driver, overall=4)])

        self.driver.refresh_from_db()
        self.assertEqual(self.driver.total_deliveries, 1)
        self.assertEqual(self.driver.overall_rating, Decimal('4.0'))

    def test_relog_refreshes_removed_driver(self):
        other = make_transporter(name='Олег Коваль', license_number='BB9999CC')
        with self.captureOnCommitCallbacks(execute=True):
            log(self.request_obj, [rated(self.driver), rated(other)])
        with self.captureOnCommitCallbacks(execute=True):
            log(self.request_obj, [rated(self.driver)])

        other.refresh_from_db()
        self.assertEqual(other.total_deliveries, 0)
        self.assertEqual(other.overall_rating, Decimal('0.0'))

    def test_refresh_failure_keeps_delivery(self):
        with patch.object(Driver, 'calculate_overall_rating', side_effect=RuntimeError('boom')):
            with self.assertLogs('logistics.services', level='WARNING'):
                with self.captureOnCommitCallbacks(execute=True):
                    log(self.request_obj, [rated(self.driver)])

        self.request_obj.refresh_from_db()
        self.assertEqual(self.request_obj.status, 'processing')
        self.assertEqual(Delivery.objects.filter(request=self.request_obj).count(), 1)

    def test_refresh_isolates_failures(self):
        other = make_transporter(name='Олег Коваль', license_number='BB9999CC')
        refreshed = services.refresh_driver_statistics({self.driver.pk, other.pk, 99999})
        self.assertEqual(refreshed, sorted([self.driver.pk, other.pk]))

    def test_status_never_skips_processing(self):
        # Без фіксації доставки підтвердити заявку неможливо
        for _ in range(2):
            with self.assertRaises(InvalidState):
                services.confirm_completion(self.request_obj.pk)
        self.request_obj.refresh_from_db()
        self.assertEqual(self.request_obj.status, 'planned')


class CancelTest(TestCase):
    def setUp(self):
        self.request_obj = make_request()
        self.driver = make_transporter()

    def test_cancel_planned(self):
        services.cancel(self.request_obj.pk)
        self.request_obj.refresh_from_db()
        self.assertEqual(self.request_obj.status, 'cancelled')

    def test_cancel_processing_removes_delivery(self):
        with self.captureOnCommitCallbacks(execute=True):
            log(self.request_obj, [rated(self.driver)])
        with self.captureOnCommitCallbacks(execute=True):
            services.cancel(self.request_obj.pk)

        self.assertFalse(Delivery.objects.filter(request=self.request_obj).exists())
        self.driver.refresh_from_db()
        self.assertEqual(self.driver.total_deliveries, 0)
        # Водій без оцінок знову може бути видалений
        self.driver.delete()

    def test_cancel_completed_fails(self):
        log(self.request_obj, [rated(self.driver)])
        services.confirm_completion(self.request_obj.pk)
        with self.assertRaises(InvalidState):
            services.cancel(self.request_obj.pk)


class LoggedDriverStatisticsTest(TransactionTestCase):
    """Без зовнішньої транзакції перерахунок виконується одразу після коміту"""

    def test_result_has_fresh_statistics(self):
        request_obj = make_request()
        driver = make_transporter()
        result = log(request_obj, [rated(driver, overall=4), {
            'name': 'Марія Шевченко',
            'type': 'in_house',
            'employee_id': 'EMP-007',
            'department': 'Доставка',
            'hire_date': '2023-05-01',
            'punctuality': 5,
            'professionalism': 4,
            'overall': 5,
        }])

        existing, created = result['drivers']
        self.assertEqual(existing.overall_rating, Decimal('4.0'))
        self.assertEqual(existing.total_deliveries, 1)
        self.assertEqual(created.overall_rating, Decimal('5.0'))
        self.assertEqual(created.total_deliveries, 1)
        self.assertIsNotNone(created.last_delivery)


class DeliveryEditTest(TestCase):
    def setUp(self):
        self.request_obj = make_request()
        self.first = make_transporter()
        self.second = make_transporter(name='Олег Коваль', license_number='BB9999CC')
        log(self.request_obj, [rated(self.first, overall=3), rated(self.second, overall=4)])
        services.confirm_completion(self.request_obj.pk)
        self.delivery = Delivery.objects.get(request=self.request_obj)
        self.first_rating = self.delivery.ratings.get(driver=self.first)
        self.second_rating = self.delivery.ratings.get(driver=self.second)

    def edit(self, data):
        delivery_data, entries = validate_delivery_payload(data, partial=True)
        return services.update_delivery(self.request_obj.pk, delivery_data, entries)

    def test_update_delivery_fields_only(self):
        self.edit({'invoice_amount': '6100.50'})
        self.delivery.refresh_from_db()
        self.assertEqual(self.delivery.invoice_amount, Decimal('6100.50'))
        self.assertEqual(self.delivery.actual_truck_count, 2)
        self.assertEqual(self.delivery.ratings.count(), 2)

    def test_pickup_edit_refreshes_last_delivery(self):
        with self.captureOnCommitCallbacks(execute=True):
            self.edit({'actual_pickup_at': '2026-03-20T09:00:00'})

        moved = timezone.make_aware(datetime(2026, 3, 20, 9, 0))
        for driver in (self.first, self.second):
            driver.refresh_from_db()
            self.assertEqual(driver.last_delivery, moved)
            self.assertEqual(driver.total_deliveries, 1)

    def test_clearing_invoice_rejected(self):
        with self.assertRaises(ValidationFailure):
            self.edit({'invoice_amount': None})
        self.delivery.refresh_from_db()
        self.assertEqual(self.delivery.invoice_amount, Decimal('5000.00'))

    def test_rating_diff(self):
        third = make_transporter(name='Петро Мельник', license_number='CC0000DD')
        with self.captureOnCommitCallbacks(execute=True):
            self.edit({'drivers': [
                {'rating_id': self.first_rating.pk, 'punctuality': 5, 'professionalism': 5, 'overall': 5},
                {'driver_id': third.pk, 'punctuality': 2, 'professionalism': 3, 'overall': 2},
            ]})

        ratings = dict(self.delivery.ratings.values_list('driver_id', 'overall'))
        self.assertEqual(ratings, {self.first.pk: 5, third.pk: 2})
        self.assertFalse(DriverRating.objects.filter(pk=self.second_rating.pk).exists())

        self.first.refresh_from_db()
        self.second.refresh_from_db()
        self.assertEqual(self.first.overall_rating, Decimal('5.0'))
        self.assertEqual(self.second.total_deliveries, 0)

    def test_foreign_rating_id_rejected(self):
        other_request = make_request(origin='Одеса')
        log(other_request, [rated(self.first)])
        foreign = DriverRating.objects.get(delivery__request=other_request)

        with self.assertRaises(ValidationFailure) as ctx:
            self.edit({'drivers': [
                {'rating_id': foreign.pk, 'punctuality': 1, 'professionalism': 1, 'overall': 1},
            ]})
        self.assertIn('drivers[0].rating_id', ctx.exception.detail)
        foreign.refresh_from_db()
        self.assertEqual(foreign.overall, 5)
        self.assertEqual(self.delivery.ratings.count(), 2)

    def test_duplicate_driver_rejected(self):
        with self.assertRaises(ValidationFailure):
            self.edit({'drivers': [
                {'rating_id': self.first_rating.pk, 'punctuality': 4, 'professionalism': 4, 'overall': 4},
                {'driver_id': self.first.pk, 'punctuality': 4, 'professionalism': 4, 'overall': 4},
            ]})
        self.assertEqual(self.delivery.ratings.count(), 2)

    def test_edit_requires_delivery(self):
        planned = make_request(origin='Харків')
        with self.assertRaises(InvalidState):
            services.update_delivery(planned.pk, {'notes': 'x'})


class LockContentionTest(TestCase):
    def test_postgres_codes(self):
        cause = Exception('deadlock detected')
        cause.sqlstate = '40P01'
        wrapped = OperationalError('deadlock detected')
        wrapped.__cause__ = cause
        self.assertTrue(is_lock_contention(wrapped))

        cause.sqlstate = '23505'
        self.assertFalse(is_lock_contention(wrapped))

    def test_psycopg2_pgcode(self):
        self.assertTrue(is_lock_contention(lock_error(pgcode='55P03')))

    def test_sqlite_codes(self):
        self.assertTrue(is_lock_contention(lock_error(sqlite_errorcode=5)))
        # SQLITE_BUSY_SNAPSHOT: розширений код з базовим SQLITE_BUSY
        self.assertTrue(is_lock_contention(lock_error(sqlite_errorcode=517)))
        self.assertFalse(is_lock_contention(lock_error(sqlite_errorcode=19)))

    def test_mysql_codes(self):
        self.assertTrue(is_lock_contention(OperationalError(1205, 'Lock wait timeout exceeded')))
        self.assertTrue(is_lock_contention(OperationalError(1213, 'Deadlock found')))
        self.assertFalse(is_lock_contention(OperationalError(1029, 'View is not a base table')))

    def test_message_alone_is_not_contention(self):
        self.assertFalse(is_lock_contention(OperationalError('Lock wait timeout exceeded')))

    @override_settings(DELIVERY_LOCK_MAX_ATTEMPTS=3, DELIVERY_LOCK_RETRY_BASE_DELAY=1.0)
    @patch('logistics.services.time.sleep')
    def test_retry_then_success(self, sleep):
        attempts = []

        def operation():
            attempts.append(1)
            if len(attempts) < 3:
                raise lock_error(sqlite_errorcode=5)
            return 'ok'

        self.assertEqual(services.run_with_lock_retry(operation), 'ok')
        self.assertEqual(len(attempts), 3)
        self.assertEqual(sleep.call_args_list, [call(2.0), call(4.0)])

    @override_settings(DELIVERY_LOCK_MAX_ATTEMPTS=3, DELIVERY_LOCK_RETRY_BASE_DELAY=1.0)
    @patch('logistics.services.time.sleep')
    def test_retry_exhausted(self, sleep):
        def operation():
            raise lock_error(sqlite_errorcode=6)

        with self.assertRaises(Contention) as ctx:
            services.run_with_lock_retry(operation)
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.detail, {'attempts': 3})
        self.assertEqual(sleep.call_count, 2)

    @patch('logistics.services.time.sleep')
    def test_other_errors_not_retried(self, sleep):
        def operation():
            raise IntegrityError('duplicate key')

        with self.assertRaises(IntegrityError):
            services.run_with_lock_retry(operation)
        sleep.assert_not_called()

    @patch('logistics.services.time.sleep')
    def test_log_delivery_retries_on_contention(self, sleep):
        request_obj = make_request()
        driver = make_transporter()
        original = services.lock_request
        calls = []

        def flaky(request_id):
            calls.append(request_id)
            if len(calls) == 1:
                raise lock_error(sqlite_errorcode=5)
            return original(request_id)

        with patch('logistics.services.lock_request', side_effect=flaky):
            log(request_obj, [rated(driver)])

        self.assertEqual(len(calls), 2)
        sleep.assert_called_once()
        self.assertEqual(Delivery.objects.filter(request=request_obj).count(), 1)


class DeliveryPayloadTest(TestCase):
    def setUp(self):
        self.driver = make_transporter()

    def test_nested_and_flat_ratings(self):
        _, assignments = validate_delivery_payload(delivery_payload([
            rated(self.driver),
            {'name': 'Новий', 'type': 'transporter', 'transport_company': 'ТОВ Шлях',
             'phone': '+380671234567', 'license_number': 'XX0001XX',
             'punctuality': 3, 'professionalism': 4, 'overall': 4, 'safety': 5},
        ]))
        self.assertEqual(assignments[0]['driver_id'], self.driver.pk)
        self.assertEqual(assignments[0]['rating']['overall'], 5)
        self.assertIsNone(assignments[1]['driver_id'])
        self.assertEqual(assignments[1]['driver_data']['name'], 'Новий')
        self.assertEqual(assignments[1]['rating']['safety'], 5)

    def test_field_errors(self):
        with self.assertRaises(ValidationFailure) as ctx:
            validate_delivery_payload({
                'actual_truck_count': 0,
                'invoice_amount': '-1',
                'drivers': [{'driver_id': self.driver.pk, 'rating': {'punctuality': 6, 'overall': 3}}],
            })
        errors = ctx.exception.detail
        for key in ('actual_pickup_at', 'actual_truck_count', 'invoice_amount',
                    'drivers[0].punctuality', 'drivers[0].professionalism'):
            self.assertIn(key, errors)

    def test_drivers_required(self):
        with self.assertRaises(ValidationFailure) as ctx:
            validate_delivery_payload(delivery_payload([]))
        self.assertIn('drivers', ctx.exception.detail)

    def test_duplicate_driver(self):
        with self.assertRaises(ValidationFailure) as ctx:
            validate_delivery_payload(delivery_payload([rated(self.driver), rated(self.driver)]))
        self.assertIn('drivers[1].driver_id', ctx.exception.detail)

    def test_new_driver_variant_fields_required(self):
        with self.assertRaises(ValidationFailure) as ctx:
            validate_delivery_payload(delivery_payload([
                {'name': 'Без даних', 'type': 'in_house', 'punctuality': 3, 'professionalism': 3, 'overall': 3},
            ]))
        self.assertIn('drivers[0].employee_id', ctx.exception.detail)
        self.assertIn('drivers[0].hire_date', ctx.exception.detail)

    def test_partial_edit_cannot_clear_required_fields(self):
        with self.assertRaises(ValidationFailure) as ctx:
            validate_delivery_payload(
                {'actual_pickup_at': None, 'actual_truck_count': '', 'invoice_amount': None},
                partial=True,
            )
        for key in ('actual_pickup_at', 'actual_truck_count', 'invoice_amount'):
            self.assertIn(key, ctx.exception.detail)

        delivery_data, _ = validate_delivery_payload({'notes': None}, partial=True)
        self.assertEqual(delivery_data, {'notes': ''})

    def test_boolean_ids_rejected(self):
        with self.assertRaises(ValidationFailure) as ctx:
            validate_delivery_payload({'drivers': [
                {'rating_id': True, 'punctuality': 4, 'professionalism': 4, 'overall': 4},
                {'driver_id': True, 'punctuality': 4, 'professionalism': 4, 'overall': 4},
            ]}, partial=True)
        self.assertIn('drivers[0].rating_id', ctx.exception.detail)
        self.assertIn('drivers[1].driver_id', ctx.exception.detail)


class RequestApiTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.driver = make_transporter()

    def post_json(self, url, payload=None):
        return self.client.post(url, data=json.dumps(payload or {}), content_type='application/json')

    def put_json(self, url, payload, method='put'):
        return getattr(self.client, method)(url, data=json.dumps(payload), content_type='application/json')

    def test_create_request(self):
        response = self.post_json(reverse('logistics:requests'), {
            'origin': 'Київ',
            'destination': 'Дніпро',
            'pickup_at': '2026-04-01T08:00:00',
            'truck_count': 3,
            'truck_type': 'refrigerated',
            'estimated_cost': '12000.00',
            'urgency_level': 'high',
        })
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body['success'])
        self.assertEqual(body['data']['status'], 'planned')
        self.assertTrue(body['data']['request_number'].startswith('REQ-'))

    def test_create_request_validation(self):
        response = self.post_json(reverse('logistics:requests'), {'origin': 'Київ', 'destination': 'київ', 'truck_type': 'bus'})
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertFalse(body['success'])
        self.assertEqual(body['code'], 'VALIDATION_ERROR')
        for field in ('destination', 'truck_type', 'pickup_at', 'truck_count'):
            self.assertIn(field, body['detail'])

    def test_malformed_json(self):
        response = self.client.post(reverse('logistics:requests'), data='{not json', content_type='application/json')
        self.assertEqual(response.status_code, 400)
        self.assertIn('body', response.json()['detail'])

    def test_list_filters(self):
        make_request(urgency_level='urgent')
        make_request(origin='Одеса', truck_type='semi')
        response = self.client.get(reverse('logistics:requests'), {'search': 'Одеса'})
        data = response.json()['data']
        self.assertEqual(data['pagination']['total'], 1)
        self.assertEqual(data['requests'][0]['origin'], 'Одеса')
        self.assertEqual(data['counts'], {'completed': 0, 'planned': 2})

        response = self.client.get(reverse('logistics:requests'), {'urgency_level': 'urgent'})
        self.assertEqual(response.json()['data']['pagination']['total'], 1)

    def test_list_invalid_date(self):
        response = self.client.get(reverse('logistics:requests'), {'date_from': '10.03.2026'})
        self.assertEqual(response.status_code, 400)

    def test_method_not_allowed(self):
        response = self.client.delete(reverse('logistics:requests'))
        self.assertEqual(response.status_code, 405)
        self.assertEqual(response.json()['code'], 'METHOD_NOT_ALLOWED')

    def test_detail_and_patch(self):
        transport_request = make_request()
        url = reverse('logistics:request_detail', args=[transport_request.pk])
        response = self.put_json(url, {'truck_count': 5}, method='patch')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['truck_count'], 5)
        self.assertEqual(response.json()['data']['origin'], 'Київ')

        response = self.client.get(url)
        self.assertIsNone(response.json()['data']['delivery'])

    def test_status_not_editable(self):
        transport_request = make_request()
        url = reverse('logistics:request_detail', args=[transport_request.pk])
        response = self.put_json(url, {'status': 'completed'}, method='patch')
        self.assertEqual(response.status_code, 400)
        transport_request.refresh_from_db()
        self.assertEqual(transport_request.status, 'planned')

    def test_completed_request_is_read_only(self):
        transport_request = make_request()
        log(transport_request, [rated(self.driver)])
        services.confirm_completion(transport_request.pk)
        url = reverse('logistics:request_detail', args=[transport_request.pk])

        response = self.put_json(url, {'truck_count': 9}, method='patch')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'INVALID_STATE')

        response = self.client.delete(url)
        self.assertEqual(response.status_code, 400)
        self.assertTrue(TransportationRequest.objects.filter(pk=transport_request.pk).exists())

    def test_soft_delete(self):
        transport_request = make_request()
        url = reverse('logistics:request_detail', args=[transport_request.pk])
        self.assertEqual(self.client.delete(url).status_code, 200)
        self.assertEqual(self.client.get(url).status_code, 404)

    def test_two_phase_completion(self):
        transport_request = make_request()
        response = self.post_json(
            reverse('logistics:request_delivery', args=[transport_request.pk]),
            delivery_payload([rated(self.driver)]),
        )
        self.assertEqual(response.status_code, 201)
        data = response.json()['data']
        self.assertEqual(data['status'], 'processing')
        self.assertEqual(data['drivers'][0]['id'], self.driver.pk)
        self.assertEqual(data['delivery']['ratings'][0]['overall'], 5)

        response = self.post_json(reverse('logistics:confirm_delivery', args=[transport_request.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['status'], 'completed')

        response = self.post_json(reverse('logistics:confirm_delivery', args=[transport_request.pk]))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['detail']['current_status'], 'completed')

    def test_delivery_aliases(self):
        transport_request = make_request()
        response = self.post_json(
            reverse('logistics:delivery_log', args=[transport_request.pk]),
            delivery_payload([rated(self.driver)]),
        )
        self.assertEqual(response.status_code, 201)
        response = self.post_json(reverse('logistics:delivery_confirm', args=[transport_request.pk]))
        self.assertEqual(response.status_code, 200)

    def test_confirm_planned_request(self):
        transport_request = make_request()
        response = self.post_json(reverse('logistics:confirm_delivery', args=[transport_request.pk]))
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertFalse(body['success'])
        self.assertEqual(body['detail'], {'current_status': 'planned', 'required_status': ['processing']})

    def test_log_unknown_request(self):
        response = self.post_json(reverse('logistics:request_delivery', args=[9999]), delivery_payload([rated(self.driver)]))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['code'], 'NOT_FOUND')

    def test_log_unknown_driver(self):
        transport_request = make_request()
        response = self.post_json(
            reverse('logistics:request_delivery', args=[transport_request.pk]),
            delivery_payload([{'driver_id': 777, 'rating': {'punctuality': 3, 'professionalism': 3, 'overall': 3}}]),
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['code'], 'DRIVER_NOT_FOUND')

    def test_log_validation_error(self):
        transport_request = make_request()
        response = self.post_json(
            reverse('logistics:request_delivery', args=[transport_request.pk]),
            delivery_payload([{'driver_id': self.driver.pk, 'rating': {'punctuality': 9}}]),
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn('drivers[0].punctuality', response.json()['detail'])

    def test_get_and_edit_delivery(self):
        transport_request = make_request()
        url = reverse('logistics:request_delivery', args=[transport_request.pk])
        self.assertEqual(self.client.get(url).status_code, 404)

        log(transport_request, [rated(self.driver)])
        rating_id = DriverRating.objects.get().pk
        response = self.put_json(url, {
            'notes': 'Оновлено',
            'drivers': [{'rating_id': rating_id, 'punctuality': 2, 'professionalism': 2, 'overall': 2}],
        })
        self.assertEqual(response.status_code, 200)
        data = response.json()['data']
        self.assertEqual(data['notes'], 'Оновлено')
        self.assertEqual(data['ratings'][0]['overall'], 2)

    def test_edit_delivery_cannot_clear_invoice(self):
        transport_request = make_request()
        url = reverse('logistics:request_delivery', args=[transport_request.pk])
        log(transport_request, [rated(self.driver)])

        response = self.put_json(url, {'invoice_amount': None})
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body['code'], 'VALIDATION_ERROR')
        self.assertIn('invoice_amount', body['detail'])
        self.assertEqual(Delivery.objects.get(request=transport_request).invoice_amount, Decimal('5000.00'))

    def test_cancel_endpoint(self):
        transport_request = make_request()
        response = self.post_json(reverse('logistics:request_cancel', args=[transport_request.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['status'], 'cancelled')

        response = self.post_json(reverse('logistics:request_cancel', args=[transport_request.pk]))
        self.assertEqual(response.status_code, 400)

    def test_performance_endpoints(self):
        transport_request = make_request()
        url = reverse('logistics:request_performance', args=[transport_request.pk])
        self.assertEqual(self.client.get(url).status_code, 404)

        log(transport_request, [rated(self.driver)], pickup='2026-03-10T10:20:00', invoice='5000.00')
        services.confirm_completion(transport_request.pk)
        metrics = self.client.get(url).json()['data']['metrics']
        self.assertEqual(metrics['delay_minutes'], 20)
        self.assertEqual(metrics['performance_grade'], 'Good')

        summary = self.client.get(reverse('logistics:performance_summary')).json()['data']
        self.assertEqual(summary['total_requests'], 1)
        self.assertEqual(summary['performance_distribution']['good'], 1)

    def test_delivery_stats(self):
        transport_request = make_request()
        log(transport_request, [rated(self.driver, overall=4)], invoice='3000.00')
        response = self.client.get(reverse('logistics:delivery_stats'), {
            'start_date': '2026-03-01', 'end_date': '2026-03-31',
        })
        data = response.json()['data']
        self.assertEqual(data['total_deliveries'], 1)
        self.assertEqual(data['total_revenue'], 3000.0)
        self.assertEqual(data['average_rating'], 4.0)

        empty = self.client.get(reverse('logistics:delivery_stats'), {'startDate': '2025-01-01', 'endDate': '2025-01-31'})
        self.assertEqual(empty.json()['data']['total_deliveries'], 0)
        self.assertEqual(empty.json()['data']['average_rating'], 0)

    @override_settings(DEBUG=False)
    def test_unexpected_error_hides_detail(self):
        with patch('logistics.services.confirm_completion', side_effect=RuntimeError('secret internals')):
            with self.assertLogs('logistics.responses', level='ERROR'):
                response = self.post_json(reverse('logistics:confirm_delivery', args=[1]))
        self.assertEqual(response.status_code, 500)
        self.assertNotIn('detail', response.json())

    def test_health(self):
        response = self.client.get(reverse('api_health'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['status'], 'ok')
