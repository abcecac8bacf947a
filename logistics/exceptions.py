"""
Типізовані помилки робочого процесу доставки.

Кожна помилка має машинний code і HTTP status_code, тож view не розбирає
текст повідомлення, а ловить клас:

    WorkflowError (500)
    +-- NotFound (404)
    |   +-- DriverNotFound (404)
    +-- InvalidState (400)
    +-- AlreadyLogged (400)
    +-- DriverInUse (400)
    +-- ValidationFailure (400)
    +-- Contention (500)
"""

# Коди помилок бази даних, що означають конфлікт блокувань
# PostgreSQL: deadlock_detected, lock_not_available
POSTGRES_CONTENTION_CODES = {'40P01', '55P03'}
# MySQL/MariaDB: lock wait timeout, deadlock
MYSQL_CONTENTION_CODES = {1205, 1213}
# SQLite: SQLITE_BUSY, SQLITE_LOCKED
SQLITE_CONTENTION_CODES = {5, 6}


class WorkflowError(Exception):
    """Base error of the delivery workflow."""

    code = 'WORKFLOW_ERROR'
    status_code = 500

    def __init__(self, message, detail=None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class NotFound(WorkflowError):
    code = 'NOT_FOUND'
    status_code = 404


class DriverNotFound(NotFound):
    code = 'DRIVER_NOT_FOUND'

    def __init__(self, driver_id):
        self.driver_id = driver_id
        super().__init__(f'Водія з ID {driver_id} не знайдено')


class InvalidState(WorkflowError):
    """Operation attempted from a status that does not allow it."""

    code = 'INVALID_STATE'
    status_code = 400

    def __init__(self, current, required, action=None):
        self.current = current
        self.required = tuple(required)
        required_text = ' або '.join(self.required)
        if action:
            message = f'Неможливо {action}: заявка має статус {current}, потрібен {required_text}'
        else:
            message = f'Заявка має статус {current}, потрібен {required_text}'
        super().__init__(message, detail={'current_status': current, 'required_status': list(self.required)})


class AlreadyLogged(WorkflowError):
    code = 'ALREADY_LOGGED'
    status_code = 400


class DriverInUse(WorkflowError):
    code = 'DRIVER_IN_USE'
    status_code = 400


class ValidationFailure(WorkflowError):
    """Malformed input; detail holds field-level errors."""

    code = 'VALIDATION_ERROR'
    status_code = 400

    def __init__(self, errors, message='Помилка валідації'):
        super().__init__(message, detail=errors)


class Contention(WorkflowError):
    """Lock wait timeout or deadlock outlived the retry budget."""

    code = 'CONTENTION'
    status_code = 500


def is_lock_contention(exc):
    """Return True when a database error is a lock timeout or a deadlock."""
    # Django обгортає помилку драйвера, тому дивимось і на __cause__
    for candidate in (exc, getattr(exc, '__cause__', None)):
        if candidate is None:
            continue
        # sqlstate у psycopg 3, pgcode у psycopg2
        sqlstate = getattr(candidate, 'sqlstate', None) or getattr(candidate, 'pgcode', None)
        if sqlstate in POSTGRES_CONTENTION_CODES:
            return True
        # Розширені коди SQLite несуть базовий код у молодшому байті
        sqlite_code = getattr(candidate, 'sqlite_errorcode', None)
        if sqlite_code is not None and (sqlite_code & 0xFF) in SQLITE_CONTENTION_CODES:
            return True
        # MySQLdb передає номер помилки першим аргументом
        args = getattr(candidate, 'args', ())
        if args and isinstance(args[0], int) and args[0] in MYSQL_CONTENTION_CODES:
            return True
    return False
