from django.urls import path

from .views import CallbackView, JobDetailView, PrepareJobView, ProcessOneView, UsageView

app_name = "transcriber"

urlpatterns = [
    path("callback/<slug:provider>", CallbackView.as_view(), name="callback"),
    path("transcribe/prepare", PrepareJobView.as_view(), name="prepare"),
    path("transcribe/process-one", ProcessOneView.as_view(), name="process_one"),
    path("user/usage", UsageView.as_view(), name="usage"),
    path("jobs/<str:job_id>", JobDetailView.as_view(), name="job_detail"),
]
