"""
Підказки на основі правил.

Кожна підказка є словником {id, title, description, severity, recommendation},
severity одне з high / medium / low. Префікс id визначає тему підказки
(route-, cost-, driver-, time-), на нього спираються резервні підказки.
"""

SEVERITIES = ('high', 'medium', 'low')
INSIGHT_KEYS = ('id', 'title', 'description', 'severity', 'recommendation')


def insight(insight_id, title, description, severity, recommendation):
    return {
        'id': insight_id,
        'title': title,
        'description': description,
        'severity': severity,
        'recommendation': recommendation,
    }


def on_time_message(rate):
    if rate >= 95:
        return 'Відмінна пунктуальність доставок'
    if rate >= 85:
        return 'Добрий результат, є простір для дрібних покращень'
    if rate >= 70:
        return 'Потрібна увага: варто оптимізувати маршрути'
    return 'Критичний рівень запізнень, потрібні негайні дії'


def cost_message(variance):
    if variance <= -10:
        return 'Значна економія відносно кошторису'
    if variance <= -5:
        return 'Добре керування витратами, є економія'
    if variance <= 5:
        return 'Витрати в допустимих межах'
    return 'Перевитрати: перегляньте ціноутворення та ефективність'


def utilization_message(rate):
    if rate >= 85:
        return 'Висока завантаженість парку, варто розширюватись'
    if rate >= 70:
        return 'Добра завантаженість з можливостями оптимізації'
    if rate >= 50:
        return 'Помірна завантаженість, покращіть планування'
    return 'Низька завантаженість, потрібна суттєва оптимізація'


def performance_message(average):
    if average >= 4.5:
        return 'Чудові оцінки водіїв'
    if average >= 4.0:
        return 'Добрі та стабільні оцінки водіїв'
    if average >= 3.5:
        return 'Середні оцінки: розгляньте цільове навчання'
    return 'Оцінки нижче середнього, потрібне втручання'


def route_insights(routes):
    insights = []
    for index, route in enumerate(routes, start=1):
        name = f"{route['origin']} - {route['destination']}"
        if route['on_time_rate'] < 80:
            insights.append(insight(
                f'route-optimization-{index}',
                'Можливість оптимізації маршруту',
                f"Маршрут {name}: {100 - route['on_time_rate']:.1f}% доставок із запізненням",
                'high' if route['on_time_rate'] < 60 else 'medium',
                'Перегляньте планування часу забору на цьому маршруті',
            ))
        if route['avg_cost_variance'] > 10:
            insights.append(insight(
                f'cost-route-{index}',
                'Перевитрати на маршруті',
                f"Маршрут {name}: вартість на {route['avg_cost_variance']:.1f}% вища за кошторис",
                'high' if route['avg_cost_variance'] > 20 else 'medium',
                'Оцініть ефективність маршруту та альтернативні варіанти',
            ))
    return insights


def cost_insights(spread):
    average = spread['avg_invoice']
    deviation = spread['stddev_invoice']
    if average > 0 and deviation > average * 0.3:
        return [insight(
            'cost-variance-high',
            'Висока мінливість вартості',
            f'Розкид вартості становить {deviation / average * 100:.1f}% від середнього рахунку',
            'medium',
            'Стандартизуйте методи оцінки вартості',
        )]
    return []


def driver_insights(drivers):
    insights = []
    for driver in drivers:
        if driver['avg_rating'] < 3.5:
            insights.append(insight(
                f"driver-performance-{driver['id']}",
                'Низькі оцінки водія',
                f"Водій {driver['name']} має середню оцінку {driver['avg_rating']:.1f}/5",
                'high' if driver['avg_rating'] < 3.0 else 'medium',
                'Розгляньте додаткове навчання або перевірку роботи',
            ))
        if driver['avg_punctuality'] < 3.0:
            insights.append(insight(
                f"driver-punctuality-{driver['id']}",
                'Проблеми з пунктуальністю',
                f"Водій {driver['name']} має низьку пунктуальність ({driver['avg_punctuality']:.1f}/5)",
                'medium',
                'Запровадьте контроль і навчання з пунктуальності',
            ))
    return insights


def hour_insights(patterns):
    insights = []
    for index, pattern in enumerate(patterns, start=1):
        if pattern['on_time_rate'] < 75:
            insights.append(insight(
                f'time-pattern-{index}',
                'Запізнення в пікові години',
                f"Забір о {pattern['hour']}:00 вчасний лише у {pattern['on_time_rate']:.1f}% випадків",
                'high' if pattern['on_time_rate'] < 60 else 'medium',
                'Перерозподіліть навантаження та ресурси на пікові години',
            ))
    return insights


def fallback_insights(insights):
    """Детерміновані підказки, коли відповідь сервісу не вдалося розібрати"""
    high = sum(1 for item in insights if item['severity'] == 'high')
    cost = sum(1 for item in insights if item['id'].startswith('cost'))
    driver = sum(1 for item in insights if item['id'].startswith('driver'))

    result = []
    if high > 2:
        result.append(insight(
            'ai-pattern-1',
            'Кілька критичних проблем',
            'Велика кількість критичних сигналів потребує негайної уваги',
            'high',
            'Визначте пріоритети та налаштуйте систематичний моніторинг',
        ))
    if cost > 0:
        result.append(insight(
            'ai-pattern-2',
            'Можливість оптимізації витрат',
            'Проблеми з вартістю виявлено в кількох напрямках',
            'medium',
            'Проведіть комплексний аналіз витрат',
        ))
    if driver > 1:
        result.append(insight(
            'ai-pattern-3',
            'Потрібна увага до роботи водіїв',
            'Виявлено кілька проблем з показниками водіїв',
            'medium',
            'Запровадьте цільові програми навчання та підтримки водіїв',
        ))
    return result
