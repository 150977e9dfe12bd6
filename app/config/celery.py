"""
Celery configuration for the marketplace chat service.

Celery runs the periodic consistency jobs of the chat app (see
chat.tasks and CELERY_BEAT_SCHEDULE in settings). Redis is both the
message broker and the result backend.

Usage:
    # Worker and scheduler
    celery -A config worker -l info
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Looks for a tasks.py module in each installed app
app.autodiscover_tasks()
