"""
HTTP clients for the speech-recognition providers.

Supplier A (Deepgram) is called with a callback URL and answers immediately
with a request id; supplier B (Replicate Whisper) creates a prediction with a
webhook. Both also have a synchronous mode used by the pull-based queue worker.
"""

import logging
from urllib.parse import urlencode

import requests

from .config import ProviderConfig
from .exceptions import SupplierError

logger = logging.getLogger(__name__)

DEEPGRAM_LISTEN_URL = "https://api.deepgram.com/v1/listen"
REPLICATE_PREDICTIONS_URL = "https://api.replicate.com/v1/predictions"

# Synchronous calls wait for the whole transcription
SYNC_TIMEOUT_SECONDS = 300


def _post(url: str, *, headers: dict, json_body: dict, timeout: int) -> dict:
    try:
        resp = requests.post(url, headers=headers, json=json_body, timeout=timeout)
    except requests.exceptions.Timeout:
        raise SupplierError(f"request to {url} timed out", code="supplier_timeout")
    except requests.exceptions.ConnectionError as e:
        raise SupplierError(f"connection error: {e}", code="supplier_unreachable")
    except requests.exceptions.RequestException as e:
        raise SupplierError(f"request to {url} failed: {e}", code="supplier_failed")

    if resp.status_code >= 400:
        body = resp.text[:300] if resp.text else "No response body"
        raise SupplierError(f"{url} returned {resp.status_code}: {body}", status=resp.status_code)

    try:
        return resp.json()
    except ValueError:
        raise SupplierError(f"{url} returned non-JSON body", status=resp.status_code)


def deepgram_params(provider: ProviderConfig, *, callback: str | None = None,
                    diarize: bool = False, language: str = "") -> dict:
    params = {
        "model": provider.model or "nova-2",
        "paragraphs": "true",
        "punctuate": "true",
    }
    if language:
        params["language"] = language
    else:
        params["detect_language"] = "true"
    if callback:
        params["callback"] = callback
        params["callback_method"] = "post"
    if diarize:
        params["diarize"] = "true"
        params["utterances"] = "true"
    return params


def submit_deepgram(provider: ProviderConfig, audio_url: str, callback: str, *,
                    diarize: bool = False, language: str = "", timeout: int = 30) -> str:
    """Queue an asynchronous transcription; returns Deepgram's request id."""
    params = deepgram_params(provider, callback=callback, diarize=diarize, language=language)
    data = _post(
        f"{DEEPGRAM_LISTEN_URL}?{urlencode(params)}",
        headers={"Authorization": f"Token {provider.api_key}"},
        json_body={"url": audio_url},
        timeout=timeout,
    )
    request_id = str(data.get("request_id") or "")
    logger.info("Deepgram accepted request_id=%s", request_id)
    return request_id


def transcribe_deepgram(provider: ProviderConfig, audio_url: str, *, diarize: bool = False,
                        language: str = "") -> dict:
    """Blocking pre-recorded transcription; returns the payload a callback would carry."""
    params = deepgram_params(provider, diarize=diarize, language=language)
    return _post(
        f"{DEEPGRAM_LISTEN_URL}?{urlencode(params)}",
        headers={"Authorization": f"Token {provider.api_key}"},
        json_body={"url": audio_url},
        timeout=SYNC_TIMEOUT_SECONDS,
    )


def replicate_payload(provider: ProviderConfig, audio_url: str, *, webhook: str | None = None) -> dict:
    payload = {
        "version": provider.model.split(":")[-1],  # "owner/model:hash" -> hash
        "input": {
            "audio": audio_url,
            "model": "large-v3",
            "translate": False,
        },
    }
    if webhook:
        payload["webhook"] = webhook
        payload["webhook_events_filter"] = ["completed"]
    return payload


def submit_replicate(provider: ProviderConfig, audio_url: str, webhook: str, *, timeout: int = 30) -> str:
    """Create a prediction that reports back to ``webhook``; returns the prediction id."""
    data = _post(
        REPLICATE_PREDICTIONS_URL,
        headers={"Authorization": f"Token {provider.api_key}"},
        json_body=replicate_payload(provider, audio_url, webhook=webhook),
        timeout=timeout,
    )
    prediction_id = str(data.get("id") or "")
    logger.info("Replicate accepted prediction id=%s", prediction_id)
    return prediction_id


def transcribe_replicate(provider: ProviderConfig, audio_url: str) -> dict:
    data = _post(
        REPLICATE_PREDICTIONS_URL,
        headers={"Authorization": f"Token {provider.api_key}", "Prefer": "wait"},
        json_body=replicate_payload(provider, audio_url),
        timeout=SYNC_TIMEOUT_SECONDS,
    )
    status = str(data.get("status") or "").lower()
    if status in ("failed", "canceled"):
        raise SupplierError(f"Replicate prediction {status}: {data.get('error')}", code="supplier_failed")
    if status and status != "succeeded":
        raise SupplierError(f"Replicate prediction still {status}", code="supplier_timeout")
    return data
