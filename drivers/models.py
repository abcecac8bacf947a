from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import ProtectedError

from logistics.exceptions import DriverInUse

from .ratings import average_overall


# Водій, що виконує доставки
# Два варіанти (transporter / in_house) з різним набором обов'язкових полів
class Driver(models.Model):
    """Водій: перевізник або штатний працівник"""

    TYPE_CHOICES = [
        ('transporter', 'Перевізник'),  # зовнішня транспортна компанія
        ('in_house', 'Штатний'),        # власний працівник
    ]

    # Поля, що належать кожному варіанту водія
    VARIANT_FIELDS = {
        'transporter': ('transport_company', 'phone', 'license_number'),
        'in_house': ('employee_id', 'department', 'hire_date'),
    }

    name = models.CharField(
        max_length=255,
        verbose_name="Ім'я"
    )
    type = models.CharField(
        max_length=20,
        choices=TYPE_CHOICES,
        verbose_name='Тип водія'
    )

    # Поля перевізника
    transport_company = models.CharField(
        max_length=255,
        blank=True,
        verbose_name='Транспортна компанія'
    )
    phone = models.CharField(
        max_length=20,
        blank=True,
        verbose_name='Телефон'
    )
    license_number = models.CharField(
        max_length=100,
        blank=True,
        verbose_name='Номер посвідчення'
    )

    # Поля штатного водія
    employee_id = models.CharField(
        max_length=50,
        blank=True,
        verbose_name='Табельний номер'
    )
    department = models.CharField(
        max_length=100,
        blank=True,
        verbose_name='Відділ'
    )
    hire_date = models.DateField(
        null=True,
        blank=True,
        verbose_name='Дата прийому'
    )

    # Накопичені показники; оновлюються лише після фіксації доставки
    overall_rating = models.DecimalField(
        max_digits=2,
        decimal_places=1,
        default=0,
        editable=False,
        verbose_name='Загальний рейтинг'
    )
    total_deliveries = models.PositiveIntegerField(
        default=0,
        editable=False,
        verbose_name='Кількість доставок'
    )
    last_delivery = models.DateTimeField(
        null=True,
        blank=True,
        editable=False,
        verbose_name='Остання доставка'
    )

    # Водія з історією оцінок не видаляємо, а архівуємо
    is_archived = models.BooleanField(
        default=False,
        verbose_name='В архіві'
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
        verbose_name = 'Водій'
        verbose_name_plural = 'Водії'
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.get_type_display()})"

    @property
    def profile(self):
        """Лише поля, дійсні для варіанту водія"""
        return {field: getattr(self, field) for field in self.VARIANT_FIELDS.get(self.type, ())}

    def clean(self):
        super().clean()
        missing = {
            field: 'Обов\'язкове поле для цього типу водія'
            for field in self.VARIANT_FIELDS.get(self.type, ())
            if not getattr(self, field)
        }
        if missing:
            raise ValidationError(missing)

    def delete(self, *args, **kwargs):
        # Оцінки посилаються на водія, тому видалення заборонене
        if self.ratings.exists():
            raise self._in_use()
        try:
            return super().delete(*args, **kwargs)
        except ProtectedError as exc:
            # Оцінка з'явилась між перевіркою та видаленням
            raise self._in_use() from exc

    def _in_use(self):
        return DriverInUse(
            'Неможливо видалити водія з історією оцінок. Перенесіть його в архів.',
            detail={'ratings_count': self.ratings.count()}
        )

    def calculate_overall_rating(self):
        """Середня загальна оцінка з усіх оцінок водія (0.0 без історії)"""
        return average_overall(self.ratings.values_list('overall', flat=True))
