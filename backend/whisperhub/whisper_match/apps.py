from django.apps import AppConfig


class WhisperMatchConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "whisperhub.whisper_match"
    label = "whisper_match"
    verbose_name = "Whisper Match"
