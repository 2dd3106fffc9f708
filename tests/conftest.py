import itertools

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from transcriber.config import (
    DEEPGRAM,
    DEEPGRAM_SIGNATURE_HEADERS,
    REPLICATE,
    REPLICATE_SIGNATURE_HEADERS,
    PipelineConfig,
    ProviderConfig,
)
from transcriber.models import Job

_job_ids = itertools.count(1)


def make_config(**overrides) -> PipelineConfig:
    deepgram = overrides.pop("deepgram", None) or ProviderConfig(
        name=DEEPGRAM,
        api_key="dg-test-key",
        webhook_secret="dg-secret",
        signature_headers=DEEPGRAM_SIGNATURE_HEADERS,
        model="nova-2",
    )
    replicate = overrides.pop("replicate", None) or ProviderConfig(
        name=REPLICATE,
        api_key="r8-test-token",
        webhook_secret="r8-secret",
        signature_headers=REPLICATE_SIGNATURE_HEADERS,
        model="openai/whisper:abc",
    )
    params = {
        "deepgram": deepgram,
        "replicate": replicate,
        "callback_base_url": "https://hooks.example.test",
        "processed_url_markers": (".r2.dev/", "pub-", "/api/media/proxy"),
    }
    params.update(overrides)
    return PipelineConfig(**params)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def make_job(db):
    def _make(**fields):
        fields.setdefault("job_id", f"job-{next(_job_ids)}")
        fields.setdefault("user_id", "1")
        fields.setdefault("source_url", "https://www.youtube.com/watch?v=abc123abc12")
        fields.setdefault("source_type", Job.SourceType.LINKED_VIDEO)
        return Job.objects.create(**fields)

    return _make


@pytest.fixture
def user(db):
    return get_user_model().objects.create_user(username="alice", password="pw-12345678")


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def auth_client(api_client, user):
    api_client.force_authenticate(user=user)
    return api_client


class FakeResponse:
    def __init__(self, status_code: int, payload=None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text or (str(payload) if payload is not None else "")

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload
