"""
WSGI config for the campus chat backend.

Serves the HTTP API only. WebSocket chat requires the ASGI entry point
(config.asgi).
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
