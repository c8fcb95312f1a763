import os
from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "whisperhub.config.settings")

django_asgi_app = get_asgi_application()

from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from whisperhub.config.jwt_auth_middleware import JwtAuthMiddlewareStack  # noqa: E402
import whisperhub.whisper_match.routing  # noqa: E402

application = ProtocolTypeRouter(
    {
        "http": django_asgi_app,
        "websocket": JwtAuthMiddlewareStack(
            URLRouter(whisperhub.whisper_match.routing.websocket_urlpatterns)
        ),
    }
)
