"""
Спільні JSON-відповіді для API.

Успіх:   {"success": true, "message"?, "data"}
Помилка: {"success": false, "code", "message", "detail"?}
"""

import json
import logging
from functools import wraps

from django.conf import settings
from django.core.paginator import EmptyPage, PageNotAnInteger, Paginator
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt

from .exceptions import ValidationFailure, WorkflowError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def success(data=None, message=None, status=200):
    payload = {'success': True}
    if message:
        payload['message'] = message
    payload['data'] = data
    return JsonResponse(payload, status=status)


def failure(message, status=400, code='ERROR', detail=None):
    payload = {'success': False, 'code': code, 'message': message}
    if detail is not None:
        payload['detail'] = detail
    return JsonResponse(payload, status=status)


def parse_json_body(request):
    """Тіло запиту як словник; для некоректного JSON помилка валідації"""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationFailure({'body': [f'Некоректний JSON: {exc}']}) from exc
    if not isinstance(data, dict):
        raise ValidationFailure({'body': ['Очікується JSON-обʼєкт']})
    return data


def form_errors(form, prefix=''):
    """Помилки форми у вигляді {поле: [повідомлення]}"""
    return {
        f'{prefix}{field}': [str(error) for error in errors]
        for field, errors in form.errors.items()
    }


def paginate(request, queryset, serializer):
    """Сторінка результатів і метадані пагінації з параметрів page/limit"""
    try:
        limit = int(request.GET.get('limit', DEFAULT_PAGE_SIZE))
    except ValueError:
        limit = DEFAULT_PAGE_SIZE
    limit = max(1, min(limit, MAX_PAGE_SIZE))

    paginator = Paginator(queryset, limit)
    try:
        page = paginator.page(request.GET.get('page', 1))
    except PageNotAnInteger:
        page = paginator.page(1)
    except EmptyPage:
        page = paginator.page(paginator.num_pages)

    return [serializer(item) for item in page.object_list], {
        'page': page.number,
        'limit': limit,
        'total': paginator.count,
        'pages': paginator.num_pages,
    }


def api_view(methods):
    """
    Обгортка JSON-view: обмежує HTTP-методи, перетворює WorkflowError
    на відповідь з її статусом, а непередбачені помилки логує і ховає.
    """
    allowed = [method.upper() for method in methods]

    def decorator(view):
        @csrf_exempt
        @wraps(view)
        def wrapper(request, *args, **kwargs):
            if request.method not in allowed:
                response = failure(
                    f'Метод {request.method} не підтримується',
                    status=405,
                    code='METHOD_NOT_ALLOWED',
                )
                response['Allow'] = ', '.join(allowed)
                return response
            try:
                return view(request, *args, **kwargs)
            except WorkflowError as exc:
                return failure(exc.message, status=exc.status_code, code=exc.code, detail=exc.detail)
            except Exception as exc:
                logger.exception('Unhandled error in %s %s', request.method, request.path)
                # Текст внутрішньої помилки показуємо лише в режимі розробки
                return failure(
                    'Внутрішня помилка сервера',
                    status=500,
                    code='INTERNAL_ERROR',
                    detail=str(exc) if settings.DEBUG else None,
                )
        return wrapper
    return decorator
