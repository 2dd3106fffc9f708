from dataclasses import dataclass, field

from django.conf import settings

DEEPGRAM = "deepgram"
REPLICATE = "replicate"

DEEPGRAM_SIGNATURE_HEADERS = ("x-dg-signature", "x-deepgram-signature", "dg-signature", "x-signature")
REPLICATE_SIGNATURE_HEADERS = ("x-replicate-signature", "x-signature")


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    api_key: str = ""
    webhook_secret: str = ""
    require_signature: bool = False
    signature_headers: tuple[str, ...] = ()
    model: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class PipelineConfig:
    """
    Everything the orchestration core reads from the environment, resolved once
    per request/task and handed to each component explicitly.
    """

    deepgram: ProviderConfig
    replicate: ProviderConfig
    supplier_async: str = ""
    callback_base_url: str = ""
    timeout_seconds: int = 30
    simulate_callback: bool = False
    queue_fallback: bool = False
    free_preview_seconds: int = 300
    processed_url_markers: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_settings(cls) -> "PipelineConfig":
        markers = list(getattr(settings, "PROCESSED_URL_MARKERS", []))
        public = getattr(settings, "S3_PUBLIC_ENDPOINT", "")
        if public:
            markers.append(f"{public.rstrip('/')}/{settings.S3_BUCKET}/")
        return cls(
            deepgram=ProviderConfig(
                name=DEEPGRAM,
                api_key=settings.DEEPGRAM_API_KEY,
                webhook_secret=settings.DEEPGRAM_WEBHOOK_SECRET,
                require_signature=settings.DEEPGRAM_REQUIRE_SIGNATURE,
                signature_headers=DEEPGRAM_SIGNATURE_HEADERS,
                model=settings.DEEPGRAM_MODEL,
            ),
            replicate=ProviderConfig(
                name=REPLICATE,
                api_key=settings.REPLICATE_API_TOKEN,
                webhook_secret=settings.REPLICATE_WEBHOOK_SECRET,
                require_signature=settings.REPLICATE_REQUIRE_SIGNATURE,
                signature_headers=REPLICATE_SIGNATURE_HEADERS,
                model=settings.REPLICATE_WHISPER_VERSION,
            ),
            supplier_async=(settings.SUPPLIER_ASYNC or "").lower(),
            callback_base_url=settings.CALLBACK_BASE_URL.rstrip("/"),
            timeout_seconds=settings.SUPPLIER_TIMEOUT_SECONDS,
            simulate_callback=settings.SIMULATE_CALLBACK,
            queue_fallback=settings.QUEUE_FALLBACK,
            free_preview_seconds=settings.FREE_PREVIEW_SECONDS,
            processed_url_markers=tuple(m for m in markers if m),
        )

    def provider(self, name: str) -> ProviderConfig:
        if name == DEEPGRAM:
            return self.deepgram
        if name == REPLICATE:
            return self.replicate
        raise KeyError(name)

    def _selected(self, name: str) -> bool:
        choice = self.supplier_async
        return choice in ("", "both") or name in choice

    @property
    def supplier_a_allowed(self) -> bool:
        return self.deepgram.configured and self._selected(DEEPGRAM)

    @property
    def supplier_b_allowed(self) -> bool:
        return self.replicate.configured and self._selected(REPLICATE)
