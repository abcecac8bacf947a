"""
WSGI-точка входу проєкту.
Змінна application використовується gunicorn/uwsgi та runserver.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

application = get_wsgi_application()
