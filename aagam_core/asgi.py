"""
ASGI entrypoint for the AAGAM dispatch node.

HTTP goes to Django (snapshot / intake / health endpoints), WebSocket
traffic goes to the dispatch consumers through Channels routing.
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'aagam_core.settings')

# Initialise Django before importing anything that touches models or settings
django_asgi_app = get_asgi_application()

from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from channels.security.websocket import AllowedHostsOriginValidator  # noqa: E402

from dispatch import routing  # noqa: E402


application = ProtocolTypeRouter({
    'http': django_asgi_app,
    'websocket': AllowedHostsOriginValidator(
        URLRouter(routing.websocket_urlpatterns)
    ),
})
