"""
DISPATCH App - WebSocket Routing Configuration
"""

from django.urls import re_path
from . import consumers


websocket_urlpatterns = [
    # Rider app and admin dashboard
    # ws://localhost:8000/ws/dispatch/
    re_path(
        r'ws/dispatch/$',
        consumers.DispatchConsumer.as_asgi()
    ),

    # Bare endpoint used by the storefront and legacy rider builds
    # ws://localhost:8000/ws/
    re_path(
        r'^ws/?$',
        consumers.DispatchConsumer.as_asgi()
    ),
]
