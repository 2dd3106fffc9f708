from dataclasses import replace
from urllib.parse import parse_qs, urlparse

import pytest

from transcriber import dispatch, suppliers, tasks
from transcriber.config import DEEPGRAM, REPLICATE
from transcriber.exceptions import SupplierError
from transcriber.models import Job
from transcriber.signing import callback_token
from transcriber.strategy import resolve_strategy

pytestmark = pytest.mark.django_db

AUDIO = "https://cdn.example.test/transcribe-audio/audio/a.mp3"


def _query(url):
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def test_callback_url_carries_job_id_and_token(config):
    url = dispatch.build_callback_url(config, DEEPGRAM, "j1")

    assert url.startswith("https://hooks.example.test/api/callback/deepgram?")
    assert _query(url) == {"job_id": "j1", "cb_sig": callback_token("dg-secret", "j1")}


def test_callback_url_without_secret_has_no_token(config):
    cfg = replace(config, replicate=replace(config.replicate, webhook_secret=""))

    url = dispatch.build_callback_url(cfg, REPLICATE, "j1", ha="1")

    assert _query(url) == {"job_id": "j1", "ha": "1"}


def test_plan_standard_job_targets_a_only(make_job, config):
    job = make_job()
    strategy = resolve_strategy(False, True, True, True)

    planned = dispatch.plan(job, strategy, config, AUDIO, diarize=True, language="fr")

    assert [t.provider for t in planned] == [DEEPGRAM]
    assert planned[0].diarize is True
    assert planned[0].language == "fr"
    assert planned[0].audio_url == AUDIO


def test_plan_standard_job_falls_back_to_b_without_a(make_job, config):
    job = make_job()

    planned = dispatch.plan(job, resolve_strategy(False, False, True, True), config, AUDIO)

    assert [t.provider for t in planned] == [REPLICATE]
    query = _query(planned[0].callback_url)
    assert query["dg_missing"] == "1"
    assert "ha" not in query


def test_plan_high_accuracy_marks_callback(make_job, config):
    job = make_job(high_accuracy=True)

    planned = dispatch.plan(job, resolve_strategy(True, True, True, True), config, AUDIO)

    assert [t.provider for t in planned] == [REPLICATE]
    assert _query(planned[0].callback_url)["ha"] == "1"


def test_plan_returns_cancelled_marker(make_job, config):
    job = make_job(status=Job.Status.CANCELLED)

    assert dispatch.plan(job, resolve_strategy(False, True, True, True), config, AUDIO) == dispatch.CANCELLED


def test_plan_is_empty_without_suppliers(make_job, config):
    assert dispatch.plan(make_job(), resolve_strategy(False, False, False, True), config, AUDIO) == []


def test_submit_swallows_supplier_errors(make_job, config, monkeypatch):
    job = make_job()

    def boom(*args, **kwargs):
        raise SupplierError("HTTP 503", status=503)

    monkeypatch.setattr(suppliers, "submit_deepgram", boom)
    task = dispatch.DispatchTask(DEEPGRAM, AUDIO, "https://hooks/cb")

    assert dispatch.submit(job.job_id, task, config) is False


def test_submit_skips_cancelled_job(make_job, config, monkeypatch):
    job = make_job(status=Job.Status.CANCELLED)
    monkeypatch.setattr(suppliers, "submit_replicate", lambda *a, **k: pytest.fail("submitted"))

    task = dispatch.DispatchTask(REPLICATE, AUDIO, "https://hooks/cb")
    assert dispatch.submit(job.job_id, task, config) is False


def test_settle_keeps_processing_when_any_target_accepted(make_job):
    job = make_job(status=Job.Status.PROCESSING)

    assert dispatch.settle(job.job_id, [False, True]) == Job.Status.PROCESSING
    job.refresh_from_db()
    assert job.status == Job.Status.PROCESSING


def test_settle_fails_job_when_every_target_failed(make_job):
    job = make_job(status=Job.Status.PROCESSING)

    assert dispatch.settle(job.job_id, [False, False]) == Job.Status.FAILED
    job.refresh_from_db()
    assert job.failure_reason == dispatch.ALL_DISPATCH_FAILED


def test_settle_does_not_override_completed_job(make_job):
    job = make_job(status=Job.Status.COMPLETED)

    assert dispatch.settle(job.job_id, [False]) == Job.Status.COMPLETED


def test_fan_out_runs_every_submission_then_settles(make_job, monkeypatch):
    job = make_job()
    seen = []

    def accept(provider, audio_url, callback, **kwargs):
        seen.append(provider.name)
        return "req-1"

    def reject(provider, audio_url, webhook, **kwargs):
        seen.append(provider.name)
        raise SupplierError("HTTP 422", status=422)

    monkeypatch.setattr(suppliers, "submit_deepgram", accept)
    monkeypatch.setattr(suppliers, "submit_replicate", reject)

    tasks.fan_out(job.job_id, [
        dispatch.DispatchTask(DEEPGRAM, AUDIO, "https://hooks/a"),
        dispatch.DispatchTask(REPLICATE, AUDIO, "https://hooks/b"),
    ])

    assert sorted(seen) == [DEEPGRAM, REPLICATE]
    job.refresh_from_db()
    assert job.status == Job.Status.PROCESSING


def test_fan_out_fails_job_when_all_submissions_fail(make_job, monkeypatch):
    job = make_job()

    def reject(*args, **kwargs):
        raise SupplierError("timed out", code="supplier_timeout")

    monkeypatch.setattr(suppliers, "submit_deepgram", reject)

    tasks.fan_out(job.job_id, [dispatch.DispatchTask(DEEPGRAM, AUDIO, "https://hooks/a")])

    job.refresh_from_db()
    assert job.status == Job.Status.FAILED
    assert job.failure_reason == dispatch.ALL_DISPATCH_FAILED


def test_submit_reports_unexpected_errors_as_failure(make_job, config, monkeypatch):
    job = make_job()

    def broken(*args, **kwargs):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(suppliers, "submit_deepgram", broken)

    assert dispatch.submit(job.job_id, dispatch.DispatchTask(DEEPGRAM, AUDIO, "https://hooks/cb"), config) is False
