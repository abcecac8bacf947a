"""
Агрегація оцінок водіїв.

Чисті функції без звернень до бази: на вхід набір оцінок (словники або
об'єкти DriverRating), на вихід середні значення та висновки.

Середнє рахуємо як ціла сума / кількість з одним діленням і округленням
half-up через Decimal, тому результат не залежить від порядку оцінок.
"""

from collections.abc import Mapping
from decimal import Decimal, ROUND_HALF_UP

# Виміри, що потрапляють у зведення (ключ зведення -> поле оцінки)
SUMMARY_DIMENSIONS = {
    'average_overall': 'overall',
    'average_punctuality': 'punctuality',
    'average_professionalism': 'professionalism',
    'average_delivery_quality': 'delivery_quality',
    'average_communication': 'communication',
    'average_safety': 'safety',
}

# Слова в коментарях, що вказують на проблему
NEGATIVE_WORDS = ('late', 'problem', 'issue', 'poor', 'bad', 'запізн', 'проблем', 'погано')

ONE_DECIMAL = Decimal('0.1')


def score_of(rating, field):
    """Значення виміру з оцінки (словник або модель)"""
    if isinstance(rating, Mapping):
        return rating.get(field)
    return getattr(rating, field, None)


def _exact_mean(values):
    # Лише наявні значення; необов'язкові виміри можуть бути None
    present = [value for value in values if value is not None]
    if not present:
        return None
    return Decimal(sum(present)) / Decimal(len(present))


def _round(value):
    if value is None:
        return 0.0
    return float(value.quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP))


def average_overall(values):
    """Mean of overall scores rounded to one decimal; 0.0 when empty."""
    return _round(_exact_mean(values))


def calculate_summary(ratings):
    """Per-dimension means over a set of ratings.

    An empty input is a valid driver history and yields an all-zero
    summary with total_ratings == 0.
    """
    ratings = list(ratings)
    summary = {
        key: _round(_exact_mean(score_of(rating, field) for rating in ratings))
        for key, field in SUMMARY_DIMENSIONS.items()
    }
    summary['total_ratings'] = len(ratings)
    return summary


def analyze_recent_performance(ratings, recent_count=5):
    """Порівнює останні оцінки з попередніми (ratings від нових до старих)"""
    ratings = list(ratings)
    if not ratings:
        return {
            'trend': 'insufficient_data',
            'message': 'Недостатньо даних для аналізу тренду',
        }

    recent = ratings[:recent_count]
    older = ratings[recent_count:]
    recent_avg = _exact_mean(score_of(r, 'overall') for r in recent) or Decimal(0)

    if not older:
        return {
            'trend': 'new_driver',
            'message': f'На основі {len(recent)} останніх доставок',
            'average_rating': _round(recent_avg),
        }

    older_avg = _exact_mean(score_of(r, 'overall') for r in older) or Decimal(0)
    difference = recent_avg - older_avg

    # Пороги різниці середніх: 0.3 для суттєвої зміни, 0.1 для помітної
    if difference > Decimal('0.3'):
        trend, message = 'improving', 'Показники суттєво покращились'
    elif difference > Decimal('0.1'):
        trend, message = 'slightly_improving', 'Є ознаки покращення'
    elif difference < Decimal('-0.3'):
        trend, message = 'declining', 'Показники суттєво погіршились'
    elif difference < Decimal('-0.1'):
        trend, message = 'slightly_declining', 'Є ознаки погіршення'
    else:
        trend, message = 'stable', 'Показники стабільні'

    return {
        'trend': trend,
        'message': message,
        'recent_average': _round(recent_avg),
        'previous_average': _round(older_avg),
        'difference': _round(difference),
    }


def generate_recommendations(summary):
    """Базові рекомендації за зведенням оцінок"""
    recommendations = []
    # Водій без історії оцінок не потребує втручання
    if not summary.get('total_ratings'):
        return recommendations

    if summary['average_overall'] < 3:
        recommendations.append({
            'priority': 'high',
            'category': 'performance',
            'title': 'Потрібне покращення показників',
            'description': 'Загальна оцінка нижче прийнятного рівня. Розгляньте навчання або перевірку роботи.',
        })
    if summary['average_punctuality'] < 3:
        recommendations.append({
            'priority': 'medium',
            'category': 'punctuality',
            'title': 'Покращити планування часу',
            'description': 'Рекомендовано навчання з оптимізації маршрутів та планування.',
        })
    if 0 < summary['average_communication'] < 3:
        recommendations.append({
            'priority': 'medium',
            'category': 'communication',
            'title': 'Покращити комунікацію',
            'description': 'Рекомендовано навчання з роботи з клієнтами.',
        })
    if summary['average_overall'] >= 4.5:
        recommendations.append({
            'priority': 'low',
            'category': 'recognition',
            'title': 'Відмінні показники',
            'description': 'Варто відзначити водія або розширити його відповідальність.',
        })
    return recommendations


def assess_risk(summary, ratings=()):
    """Оцінка ризику: low / medium / high з переліком чинників"""
    level = 'low'
    factors = []

    def raise_to(new_level):
        nonlocal level
        order = ('low', 'medium', 'high')
        if order.index(new_level) > order.index(level):
            level = new_level

    if summary.get('total_ratings'):
        if summary['average_overall'] < 2.5:
            raise_to('high')
            factors.append('Стабільно низькі загальні оцінки')
        elif summary['average_overall'] < 3.5:
            raise_to('medium')
            factors.append('Загальні оцінки нижче середнього')

        if summary['average_punctuality'] < 2.5:
            raise_to('high')
            factors.append('Погана пунктуальність')

        if 0 < summary['average_delivery_quality'] < 3:
            raise_to('medium')
            factors.append('Нестабільна якість доставки')

    ratings = list(ratings)
    if ratings:
        negative = 0
        for rating in ratings:
            comment = (score_of(rating, 'comments') or '').lower()
            if any(word in comment for word in NEGATIVE_WORDS):
                negative += 1
        if negative > len(ratings) * 0.3:
            raise_to('high' if level != 'low' else 'medium')
            factors.append('Багато негативних коментарів')

    recommendations = {
        'high': 'Потрібне негайне втручання: план покращення або перепризначення.',
        'medium': 'Уважно стежити та надати додаткове навчання.',
        'low': 'Звичайний моніторинг, показники в нормі.',
    }
    return {
        'level': level,
        'factors': factors,
        'recommendation': recommendations[level],
    }
