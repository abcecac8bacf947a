# Згенеровано Django 5.0 2026-10-18 10:00

import django.core.validators
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('drivers', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='TransportationRequest',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('request_number', models.CharField(editable=False, max_length=20, unique=True, verbose_name='Номер заявки')),
                ('origin', models.CharField(max_length=255, verbose_name='Звідки')),
                ('destination', models.CharField(max_length=255, verbose_name='Куди')),
                ('estimated_distance', models.DecimalField(blank=True, decimal_places=2, max_digits=8, null=True, verbose_name='Орієнтовна відстань')),
                ('pickup_at', models.DateTimeField(verbose_name='Плановий час забору')),
                ('truck_count', models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)], verbose_name='Кількість вантажівок')),
                ('truck_type', models.CharField(choices=[('box', 'Фургон'), ('flatbed', 'Платформа'), ('semi', 'Напівпричіп'), ('refrigerated', 'Рефрижератор')], default='box', max_length=20, verbose_name='Тип вантажівки')),
                ('load_details', models.TextField(blank=True, verbose_name='Опис вантажу')),
                ('special_requirements', models.TextField(blank=True, verbose_name='Особливі вимоги')),
                ('estimated_cost', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True, validators=[django.core.validators.MinValueValidator(0)], verbose_name='Орієнтовна вартість')),
                ('urgency_level', models.CharField(choices=[('low', 'Низька'), ('medium', 'Середня'), ('high', 'Висока'), ('urgent', 'Термінова')], default='medium', max_length=10, verbose_name='Терміновість')),
                ('status', models.CharField(choices=[('planned', 'Заплановано'), ('processing', 'В обробці'), ('completed', 'Завершено'), ('cancelled', 'Скасовано')], db_index=True, default='planned', max_length=20, verbose_name='Статус')),
                ('created_by', models.CharField(default='System', max_length=100, verbose_name='Автор')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Створено')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Оновлено')),
                ('deleted_at', models.DateTimeField(blank=True, editable=False, null=True, verbose_name='Видалено')),
            ],
            options={
                'verbose_name': 'Заявка на перевезення',
                'verbose_name_plural': 'Заявки на перевезення',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['pickup_at'], name='request_pickup_idx')],
            },
        ),
        migrations.CreateModel(
            name='Delivery',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('actual_pickup_at', models.DateTimeField(verbose_name='Фактичний час забору')),
                ('actual_truck_count', models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)], verbose_name='Фактична кількість вантажівок')),
                ('invoice_amount', models.DecimalField(decimal_places=2, max_digits=10, validators=[django.core.validators.MinValueValidator(0)], verbose_name='Сума рахунку')),
                ('notes', models.TextField(blank=True, verbose_name='Примітки')),
                ('logged_by', models.CharField(default='System', max_length=100, verbose_name='Хто зафіксував')),
                ('logged_at', models.DateTimeField(auto_now_add=True, verbose_name='Зафіксовано')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Оновлено')),
                ('request', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='delivery', to='logistics.transportationrequest', verbose_name='Заявка')),
            ],
            options={
                'verbose_name': 'Доставка',
                'verbose_name_plural': 'Доставки',
                'ordering': ['-actual_pickup_at'],
                'indexes': [models.Index(fields=['actual_pickup_at'], name='delivery_pickup_idx')],
            },
        ),
        migrations.CreateModel(
            name='DriverRating',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('punctuality', models.PositiveSmallIntegerField(validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(5)], verbose_name='Пунктуальність')),
                ('professionalism', models.PositiveSmallIntegerField(validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(5)], verbose_name='Професійність')),
                ('delivery_quality', models.PositiveSmallIntegerField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(5)], verbose_name='Якість доставки')),
                ('communication', models.PositiveSmallIntegerField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(5)], verbose_name='Комунікація')),
                ('safety', models.PositiveSmallIntegerField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(5)], verbose_name='Безпека')),
                ('policy_compliance', models.PositiveSmallIntegerField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(5)], verbose_name='Дотримання правил')),
                ('fuel_efficiency', models.PositiveSmallIntegerField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(5)], verbose_name='Економія пального')),
                ('overall', models.PositiveSmallIntegerField(validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(5)], verbose_name='Загальна оцінка')),
                ('comments', models.TextField(blank=True, verbose_name='Коментар')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Створено')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Оновлено')),
                ('delivery', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='ratings', to='logistics.delivery', verbose_name='Доставка')),
                ('driver', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='ratings', to='drivers.driver', verbose_name='Водій')),
            ],
            options={
                'verbose_name': 'Оцінка водія',
                'verbose_name_plural': 'Оцінки водіїв',
                'ordering': ['-created_at'],
                'constraints': [models.UniqueConstraint(fields=('delivery', 'driver'), name='unique_rating_per_delivery_driver')],
            },
        ),
    ]
