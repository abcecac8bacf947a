from decimal import Decimal, ROUND_HALF_UP

from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import IntegrityError, models, transaction
from django.utils import timezone

from .exceptions import Contention, InvalidState


class ActiveRequestManager(models.Manager):
    """Приховує м'яко видалені заявки"""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


# Заявка на перевезення: створює координатор, завершує двофазний процес доставки
class TransportationRequest(models.Model):
    """Transportation request"""

    STATUS_CHOICES = [
        ('planned', 'Заплановано'),   # доставка ще не зафіксована
        ('processing', 'В обробці'),  # доставку зафіксовано, чекаємо підтвердження
        ('completed', 'Завершено'),   # підтверджено, змінювати не можна
        ('cancelled', 'Скасовано'),
    ]

    TRUCK_TYPE_CHOICES = [
        ('box', 'Фургон'),
        ('flatbed', 'Платформа'),
        ('semi', 'Напівпричіп'),
        ('refrigerated', 'Рефрижератор'),
    ]

    URGENCY_CHOICES = [
        ('low', 'Низька'),
        ('medium', 'Середня'),
        ('high', 'Висока'),
        ('urgent', 'Термінова'),
    ]

    # Дозволені переходи статусу; completed і cancelled кінцеві
    # processing -> processing означає повторну фіксацію доставки
    ALLOWED_TRANSITIONS = {
        'planned': ('processing', 'cancelled'),
        'processing': ('processing', 'completed', 'cancelled'),
        'completed': (),
        'cancelled': (),
    }

    REQUEST_NUMBER_ATTEMPTS = 5

    # Номер у форматі REQ-<рік>-<NNN>, присвоюється при першому збереженні
    request_number = models.CharField(
        max_length=20,
        unique=True,
        editable=False,
        verbose_name='Номер заявки'
    )
    origin = models.CharField(
        max_length=255,
        verbose_name='Звідки'
    )
    destination = models.CharField(
        max_length=255,
        verbose_name='Куди'
    )
    # Орієнтовна відстань у кілометрах
    estimated_distance = models.DecimalField(
        max_digits=8,
        decimal_places=2,
        null=True,
        blank=True,
        verbose_name='Орієнтовна відстань'
    )
    pickup_at = models.DateTimeField(
        verbose_name='Плановий час забору'
    )
    truck_count = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        verbose_name='Кількість вантажівок'
    )
    truck_type = models.CharField(
        max_length=20,
        choices=TRUCK_TYPE_CHOICES,
        default='box',
        verbose_name='Тип вантажівки'
    )
    load_details = models.TextField(
        blank=True,
        verbose_name='Опис вантажу'
    )
    special_requirements = models.TextField(
        blank=True,
        verbose_name='Особливі вимоги'
    )
    estimated_cost = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(0)],
        verbose_name='Орієнтовна вартість'
    )
    urgency_level = models.CharField(
        max_length=10,
        choices=URGENCY_CHOICES,
        default='medium',
        verbose_name='Терміновість'
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default='planned',
        db_index=True,
        verbose_name='Статус'
    )
    created_by = models.CharField(
        max_length=100,
        default='System',
        verbose_name='Автор'
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
        verbose_name='Створено'
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        verbose_name='Оновлено'
    )
    # М'яке видалення: рядок залишається в базі
    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        editable=False,
        verbose_name='Видалено'
    )

    objects = ActiveRequestManager()
    all_objects = models.Manager()

    class Meta:
        verbose_name = 'Заявка на перевезення'
        verbose_name_plural = 'Заявки на перевезення'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['pickup_at'], name='request_pickup_idx'),
        ]

    def __str__(self):
        return f"{self.request_number}: {self.origin} → {self.destination}"

    def save(self, *args, **kwargs):
        if self.request_number:
            return super().save(*args, **kwargs)

        # Паралельні створення можуть отримати однаковий номер, тоді беремо наступний
        for _ in range(self.REQUEST_NUMBER_ATTEMPTS):
            self.request_number = self.next_request_number()
            try:
                with transaction.atomic():
                    return super().save(*args, **kwargs)
            except IntegrityError:
                if not type(self).all_objects.filter(request_number=self.request_number).exists():
                    self.request_number = ''
                    raise
        number = self.request_number
        self.request_number = ''
        raise Contention(
            'Не вдалося виділити номер заявки, спробуйте ще раз',
            detail={'request_number': number, 'attempts': self.REQUEST_NUMBER_ATTEMPTS}
        )

    @classmethod
    def next_request_number(cls, year=None):
        """
        Наступний номер заявки в межах року (враховує і видалені заявки).

        Номер доповнюється нулями до трьох цифр; після 999 послідовність
        продовжується як REQ-<рік>-1000.
        """
        year = year or timezone.now().year
        prefix = f'REQ-{year}-'
        numbers = cls.all_objects.filter(request_number__startswith=prefix).values_list('request_number', flat=True)
        sequence = max((int(number[len(prefix):]) for number in numbers if number[len(prefix):].isdigit()), default=0)
        return f'{prefix}{sequence + 1:03d}'

    def can_transition_to(self, status):
        return status in self.ALLOWED_TRANSITIONS.get(self.status, ())

    def ensure_status(self, *allowed, action=None):
        """Кидає InvalidState, якщо поточний статус не входить у allowed"""
        if self.status not in allowed:
            raise InvalidState(self.status, allowed, action=action)

    def soft_delete(self):
        self.ensure_status('planned', 'processing', 'cancelled', action='видалити заявку')
        self.deleted_at = timezone.now()
        self.save(update_fields=['deleted_at', 'updated_at'])

    def performance_metrics(self):
        """Відхилення фактичної доставки від плану; None, якщо доставки немає"""
        delivery = getattr(self, 'delivery', None)
        if delivery is None:
            return None
        return calculate_performance(
            planned_pickup=self.pickup_at,
            actual_pickup=delivery.actual_pickup_at,
            planned_trucks=self.truck_count,
            actual_trucks=delivery.actual_truck_count,
            estimated_cost=self.estimated_cost,
            invoice_amount=delivery.invoice_amount,
        )


# Пороги оцінки виконання: (затримка у хв, % вантажівок, % вартості)
PERFORMANCE_THRESHOLDS = (
    ('Poor', 60, 50, 25),
    ('Fair', 30, 25, 15),
    ('Good', 15, 10, 10),
)

TWO_PLACES = Decimal('0.01')


def calculate_performance(planned_pickup, actual_pickup, planned_trucks, actual_trucks,
                          estimated_cost, invoice_amount):
    delay_minutes = round((actual_pickup - planned_pickup).total_seconds() / 60)

    truck_variance = actual_trucks - planned_trucks
    truck_variance_pct = Decimal(truck_variance * 100) / planned_trucks if planned_trucks > 0 else Decimal(0)

    estimate = Decimal(estimated_cost or 0)
    cost_variance = Decimal(invoice_amount) - estimate
    cost_variance_pct = cost_variance * 100 / estimate if estimate > 0 else Decimal(0)

    grade = 'Excellent'
    for name, max_delay, max_trucks, max_cost in PERFORMANCE_THRESHOLDS:
        if delay_minutes > max_delay or abs(truck_variance_pct) > max_trucks or abs(cost_variance_pct) > max_cost:
            grade = name
            break

    return {
        'delay_minutes': delay_minutes,
        'truck_variance': truck_variance,
        'truck_variance_percentage': float(truck_variance_pct.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)),
        'cost_variance': float(cost_variance.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)),
        'cost_variance_percentage': float(cost_variance_pct.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)),
        'performance_grade': grade,
    }


# Фактична доставка за заявкою (не більше однієї на заявку)
class Delivery(models.Model):
    """Delivery record"""

    # CASCADE: доставка і її оцінки зникають разом із заявкою
    request = models.OneToOneField(
        TransportationRequest,
        on_delete=models.CASCADE,
        related_name='delivery',
        verbose_name='Заявка'
    )
    actual_pickup_at = models.DateTimeField(
        verbose_name='Фактичний час забору'
    )
    actual_truck_count = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        verbose_name='Фактична кількість вантажівок'
    )
    invoice_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(0)],
        verbose_name='Сума рахунку'
    )
    notes = models.TextField(
        blank=True,
        verbose_name='Примітки'
    )
    logged_by = models.CharField(
        max_length=100,
        default='System',
        verbose_name='Хто зафіксував'
    )
    logged_at = models.DateTimeField(
        auto_now_add=True,
        verbose_name='Зафіксовано'
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        verbose_name='Оновлено'
    )

    class Meta:
        verbose_name = 'Доставка'
        verbose_name_plural = 'Доставки'
        ordering = ['-actual_pickup_at']
        indexes = [
            models.Index(fields=['actual_pickup_at'], name='delivery_pickup_idx'),
        ]

    def __str__(self):
        return f"Доставка {self.request.request_number}"


SCORE_VALIDATORS = [MinValueValidator(1), MaxValueValidator(5)]


# Оцінка одного водія за одну доставку
class DriverRating(models.Model):
    """Оцінка водія від 1 до 5 за кількома вимірами"""

    # Обов'язкові виміри
    REQUIRED_SCORES = ('punctuality', 'professionalism', 'overall')
    # Необов'язкові виміри (залежать від типу водія)
    OPTIONAL_SCORES = ('delivery_quality', 'communication', 'safety', 'policy_compliance', 'fuel_efficiency')

    delivery = models.ForeignKey(
        Delivery,
        on_delete=models.CASCADE,
        related_name='ratings',
        verbose_name='Доставка'
    )
    # PROTECT: водія з оцінками видалити не можна
    driver = models.ForeignKey(
        'drivers.Driver',
        on_delete=models.PROTECT,
        related_name='ratings',
        verbose_name='Водій'
    )
    punctuality = models.PositiveSmallIntegerField(
        validators=SCORE_VALIDATORS,
        verbose_name='Пунктуальність'
    )
    professionalism = models.PositiveSmallIntegerField(
        validators=SCORE_VALIDATORS,
        verbose_name='Професійність'
    )
    delivery_quality = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=SCORE_VALIDATORS,
        verbose_name='Якість доставки'
    )
    communication = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=SCORE_VALIDATORS,
        verbose_name='Комунікація'
    )
    safety = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=SCORE_VALIDATORS,
        verbose_name='Безпека'
    )
    policy_compliance = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=SCORE_VALIDATORS,
        verbose_name='Дотримання правил'
    )
    fuel_efficiency = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=SCORE_VALIDATORS,
        verbose_name='Економія пального'
    )
    overall = models.PositiveSmallIntegerField(
        validators=SCORE_VALIDATORS,
        verbose_name='Загальна оцінка'
    )
    comments = models.TextField(
        blank=True,
        verbose_name='Коментар'
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
        verbose_name='Створено'
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        verbose_name='Оновлено'
    )

    class Meta:
        verbose_name = 'Оцінка водія'
        verbose_name_plural = 'Оцінки водіїв'
        ordering = ['-created_at']
        constraints = [
            # Одна оцінка водія за доставку
            models.UniqueConstraint(fields=['delivery', 'driver'], name='unique_rating_per_delivery_driver'),
        ]

    def __str__(self):
        return f"{self.driver.name}: {self.overall}/5"
