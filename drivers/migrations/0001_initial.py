# Згенеровано Django 5.0 2026-10-18 10:00

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='Driver',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255, verbose_name="Ім'я")),
                ('type', models.CharField(choices=[('transporter', 'Перевізник'), ('in_house', 'Штатний')], max_length=20, verbose_name='Тип водія')),
                ('transport_company', models.CharField(blank=True, max_length=255, verbose_name='Транспортна компанія')),
                ('phone', models.CharField(blank=True, max_length=20, verbose_name='Телефон')),
                ('license_number', models.CharField(blank=True, max_length=100, verbose_name='Номер посвідчення')),
                ('employee_id', models.CharField(blank=True, max_length=50, verbose_name='Табельний номер')),
                ('department', models.CharField(blank=True, max_length=100, verbose_name='Відділ')),
                ('hire_date', models.DateField(blank=True, null=True, verbose_name='Дата прийому')),
                ('overall_rating', models.DecimalField(decimal_places=1, default=0, editable=False, max_digits=2, verbose_name='Загальний рейтинг')),
                ('total_deliveries', models.PositiveIntegerField(default=0, editable=False, verbose_name='Кількість доставок')),
                ('last_delivery', models.DateTimeField(blank=True, editable=False, null=True, verbose_name='Остання доставка')),
                ('is_archived', models.BooleanField(default=False, verbose_name='В архіві')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Створено')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Оновлено')),
            ],
            options={
                'verbose_name': 'Водій',
                'verbose_name_plural': 'Водії',
                'ordering': ['name'],
            },
        ),
    ]
