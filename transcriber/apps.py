from django.apps import AppConfig


class TranscriberConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "transcriber"
    verbose_name = "Transcription jobs"
