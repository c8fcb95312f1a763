# whisperhub/whisper_match/routing.py
from django.urls import re_path
from .consumers import WhisperMatchConsumer

websocket_urlpatterns = [
    re_path(r"^ws/whisper-match/?$", WhisperMatchConsumer.as_asgi()),
]
