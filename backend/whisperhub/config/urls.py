# whisperhub/config/urls.py
from django.contrib import admin
from django.urls import path, include


urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/whisper-match/", include("whisperhub.whisper_match.urls")),
]
