"""
WSGI config for the marketplace chat service.

The service is deployed via ASGI (config.asgi) because the chat needs
WebSockets. This WSGI entry point serves the REST API and admin only.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
