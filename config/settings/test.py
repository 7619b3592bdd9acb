"""Test settings for SlotKeeper.

Tasks run eagerly, mail goes to the in-memory outbox and external
providers are never contacted. Set DB_ENGINE to run the suite on PostgreSQL.
"""

from .base import *  # noqa: F401,F403

DEBUG = False

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

INVOICING_API_BASE_URL = ''
INVOICING_API_KEY = ''
WHATSAPP_API_URL = ''
WHATSAPP_TOKEN = ''

for _name in ('apps', 'shared'):
    LOGGING['loggers'][_name]['level'] = 'WARNING'  # noqa: F405

if DATABASES['default']['ENGINE'] == 'django.db.backends.sqlite3':  # noqa: F405
    # File-backed test database with BEGIN IMMEDIATE: writers are serialized,
    # so the threaded booking tests also run without PostgreSQL.
    DATABASES['default']['OPTIONS'] = {'transaction_mode': 'IMMEDIATE', 'timeout': 30}  # noqa: F405
    DATABASES['default']['TEST'] = {'NAME': BASE_DIR / 'test_db.sqlite3'}  # noqa: F405
