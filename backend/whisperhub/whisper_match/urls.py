# whisperhub/whisper_match/urls.py
from django.urls import path
from .views import (
    WhisperMatchCurrentView,
    WhisperMatchDetailView,
    WhisperMatchJoinView,
    WhisperMatchLeaveView,
    WhisperMatchMessageView,
)

urlpatterns = [
    path("join", WhisperMatchJoinView.as_view()),
    path("join/", WhisperMatchJoinView.as_view()),
    path("message", WhisperMatchMessageView.as_view()),
    path("message/", WhisperMatchMessageView.as_view()),
    path("leave", WhisperMatchLeaveView.as_view()),
    path("leave/", WhisperMatchLeaveView.as_view()),
    path("current", WhisperMatchCurrentView.as_view()),
    path("current/", WhisperMatchCurrentView.as_view()),
    path("<str:match_id>", WhisperMatchDetailView.as_view()),
]
