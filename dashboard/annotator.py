"""
Доповнення підказок текстовою моделлю.

Сервіс необов'язковий: без ключа, при таймауті чи будь-якій помилці
повертаються вихідні підказки без змін. Якщо відповідь не вдалося
розібрати, до перших двох підказок додаються резервні з insights.py.
"""

import json
import logging
import re

import openai
from django.conf import settings

from .insights import INSIGHT_KEYS, SEVERITIES, fallback_insights

logger = logging.getLogger(__name__)

# Скільки вихідних підказок залишаємо перед доповненнями
KEEP_ORIGINAL = 2

SYSTEM_PROMPT = (
    'You are an expert transportation and logistics analyst. '
    'Generate 2-3 additional insights based on the provided data. '
    'Keep descriptions to 10 words or less, use severity "high", "medium" or "low", '
    'include an actionable recommendation and respond with a JSON array only.'
)

FENCE_RE = re.compile(r'```(?:json)?\s*(.*?)```', re.DOTALL)
ARRAY_RE = re.compile(r'\[.*\]', re.DOTALL)


def parse_insights(text):
    """
    Розбирає JSON-масив підказок з відповіді моделі.

    Повертає список або None, якщо текст не є коректним масивом
    підказок з усіма ключами та допустимою severity.
    """
    if not text:
        return None
    fenced = FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1)
    match = ARRAY_RE.search(text)
    if match is None:
        return None
    try:
        items = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(items, list):
        return None

    parsed = []
    for item in items:
        if not isinstance(item, dict):
            return None
        if any(not isinstance(item.get(key), str) for key in INSIGHT_KEYS):
            return None
        if item['severity'] not in SEVERITIES:
            return None
        parsed.append({key: item[key] for key in INSIGHT_KEYS})
    return parsed


def build_prompt(insights, start, end):
    lines = [f'ANALYSIS PERIOD: {start} to {end}', '', 'EXISTING INSIGHTS:']
    for index, item in enumerate(insights, start=1):
        lines.append(f"{index}. {item['title']}: {item['description']} (Severity: {item['severity']})")
    lines += [
        '',
        'Return ONLY a JSON array of objects with keys '
        '"id", "title", "description", "severity", "recommendation".',
    ]
    return '\n'.join(lines)


class NullInsightAnnotator:
    """Annotator used when no text service is configured."""

    available = False

    def annotate(self, insights, start, end):
        return list(insights)


class OpenAIInsightAnnotator:
    """Annotator backed by the OpenAI chat completions API."""

    available = True

    def __init__(self, api_key=None, model='gpt-4o-mini', timeout=10.0, client=None):
        self.model = model
        # Без повторних спроб клієнта: повільний сервіс не має затримувати аналітику
        self.client = client or openai.OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def annotate(self, insights, start, end):
        insights = list(insights)
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {'role': 'system', 'content': SYSTEM_PROMPT},
                    {'role': 'user', 'content': build_prompt(insights, start, end)},
                ],
            )
            text = response.choices[0].message.content
        except Exception as exc:
            logger.warning('Insight annotator failed, returning original insights: %s', exc)
            return insights

        if not text or not text.strip():
            logger.warning('Insight annotator returned an empty response')
            return insights

        parsed = parse_insights(text)
        if parsed is None:
            logger.warning('Insight annotator response is not a valid insight array, using fallback')
            return insights[:KEEP_ORIGINAL] + fallback_insights(insights)
        return insights[:KEEP_ORIGINAL] + parsed


def build_annotator():
    """OpenAI-анотатор, якщо задано ключ, інакше порожній"""
    if settings.OPENAI_API_KEY:
        return OpenAIInsightAnnotator(
            api_key=settings.OPENAI_API_KEY,
            model=settings.INSIGHT_MODEL,
            timeout=settings.INSIGHT_TIMEOUT_SECONDS,
        )
    logger.debug('OPENAI_API_KEY is not set, insights are returned without annotation')
    return NullInsightAnnotator()
