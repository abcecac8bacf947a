"""
Налаштування Django-проєкту транспортної координації.
Тут визначаємо підключені застосунки, базу даних (SQLite або PostgreSQL),
логування, параметри робочого процесу доставки та сервісу підказок.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Шляхи визначаємо як BASE_DIR / 'subdir'.
# Змінна BASE_DIR: корінь проєкту
BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / '.env')

# УВАГА: секретний ключ у продакшні має бути прихованим
# Для розробки залишаємо небезпечний ключ за замовчуванням
SECRET_KEY = os.getenv(
    'DJANGO_SECRET_KEY',
    'django-insecure-7v$q1r!c0x2l@k9m#t4d8w^h6n%z3b&f5p*j(y)s-a+e=g_u'
)

# Режим розробки: детальні помилки та поле detail у відповідях API
# У продакшні вимикаємо через DJANGO_DEBUG=false
DEBUG = os.getenv('DJANGO_DEBUG', 'true').lower() in ('1', 'true', 'yes')

# Дозволені домени через кому; порожній список означає лише локальний запуск
ALLOWED_HOSTS = [host.strip() for host in os.getenv('DJANGO_ALLOWED_HOSTS', '').split(',') if host.strip()]


# Налаштування застосунків
INSTALLED_APPS = [
    # Вбудовані Django-додатки (потрібні адмін-панелі)
    'django.contrib.admin',          # Адмін-панель
    'django.contrib.auth',           # Автентифікація
    'django.contrib.contenttypes',   # Типи контенту
    'django.contrib.sessions',       # Сесії
    'django.contrib.messages',       # Повідомлення
    'django.contrib.staticfiles',    # Статика

    # Наші застосунки
    'drivers',                       # Водії, оцінки, агрегація рейтингу
    'logistics',                     # Заявки, доставки, двофазне завершення
    'dashboard',                     # KPI, тренди, підказки
]

# Порядок важливий (проходження вниз на запиті й вгору на відповіді)
MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'config.wsgi.application'


# Налаштування бази даних
# За замовчуванням використовуємо SQLite, щоб проект запускався без додаткових сервісів
# PostgreSQL працює з ізоляцією read committed (значення за замовчуванням)

USE_POSTGRES = os.getenv('USE_POSTGRES', 'false').lower() in ('1', 'true', 'yes')

if USE_POSTGRES:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': os.getenv('POSTGRES_DB', 'transport'),
            'USER': os.getenv('POSTGRES_USER', 'postgres'),
            'PASSWORD': os.getenv('POSTGRES_PASSWORD', 'postgres'),
            'HOST': os.getenv('POSTGRES_HOST', 'localhost'),
            'PORT': os.getenv('POSTGRES_PORT', '5432'),
            'OPTIONS': {
                # Таймаут очікування блокування рядка є сигналом для повторної спроби
                'options': f"-c lock_timeout={os.getenv('POSTGRES_LOCK_TIMEOUT_MS', '30000')}",
            },
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }


# Валідатори паролів (для користувачів адмін-панелі)
AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]


# Інтернаціоналізація
LANGUAGE_CODE = 'uk'

TIME_ZONE = 'Europe/Kyiv'

USE_I18N = True

USE_TZ = True


# Статичні файли (потрібні лише адмін-панелі)
STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# Логування: один консольний обробник, рівень задаємо через LOG_LEVEL
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'django': {'handlers': ['console'], 'level': 'WARNING', 'propagate': False},
        'logistics': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'drivers': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'dashboard': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
    },
}


# Робочий процес доставки: кількість спроб транзакції при конфлікті блокувань
# Затримка після спроби n дорівнює base * 2**n секунд
DELIVERY_LOCK_MAX_ATTEMPTS = int(os.getenv('DELIVERY_LOCK_MAX_ATTEMPTS', '3'))
DELIVERY_LOCK_RETRY_BASE_DELAY = float(os.getenv('DELIVERY_LOCK_RETRY_BASE_DELAY', '1.0'))

# Найбільше вікно дат для аналітики (днів)
DASHBOARD_MAX_RANGE_DAYS = int(os.getenv('DASHBOARD_MAX_RANGE_DAYS', '90'))

# Сервіс текстових підказок (необов'язковий)
# Без ключа аналітика повертає лише правила без доповнень
OPENAI_API_KEY = os.getenv('OPENAI_API_KEY', '')
INSIGHT_MODEL = os.getenv('INSIGHT_MODEL', 'gpt-4o-mini')
INSIGHT_TIMEOUT_SECONDS = float(os.getenv('INSIGHT_TIMEOUT_SECONDS', '10'))
