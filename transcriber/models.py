from django.db import models
from django.db.models import Q
from django.utils import timezone


class JobQuerySet(models.QuerySet):
    """
    Status transitions are conditional UPDATEs so the store arbitrates races
    between concurrent webhook deliveries, dispatch settlement and user cancels.
    """

    def active(self):
        return self.exclude(status__in=Job.TERMINAL)

    def is_cancelled(self, job_id: str) -> bool:
        return self.filter(job_id=job_id, status=Job.Status.CANCELLED).exists()

    def mark_processing(self, job_id: str) -> bool:
        return bool(
            self.filter(job_id=job_id, status__in=[Job.Status.PENDING, Job.Status.PROCESSING])
            .update(status=Job.Status.PROCESSING, updated_at=timezone.now())
        )

    def mark_failed(self, job_id: str, reason: str = "") -> bool:
        now = timezone.now()
        return bool(
            self.active().filter(job_id=job_id).update(
                status=Job.Status.FAILED,
                failure_reason=reason[:255],
                completed_at=now,
                updated_at=now,
            )
        )

    def claim_delivery(self, job_id: str) -> bool:
        """True only for the first delivery to reach a non-terminal job."""
        now = timezone.now()
        return bool(
            self.active()
            .filter(job_id=job_id, delivery_claimed_at__isnull=True)
            .update(status=Job.Status.PROCESSING, delivery_claimed_at=now, updated_at=now)
        )

    def release_delivery(self, job_id: str) -> None:
        self.filter(job_id=job_id).update(delivery_claimed_at=None, updated_at=timezone.now())

    def complete(self, job_id: str, **fields) -> bool:
        now = timezone.now()
        fields.setdefault("completed_at", now)
        return bool(
            self.active().filter(job_id=job_id).update(
                status=Job.Status.COMPLETED, updated_at=now, **fields
            )
        )

    def set_processed_url(self, job_id: str, url: str, **fields) -> bool:
        # processed_url is replaced, never cleared
        if not url:
            return False
        return bool(
            self.filter(job_id=job_id)
            .exclude(status=Job.Status.CANCELLED)
            .update(processed_url=url, updated_at=timezone.now(), **fields)
        )


class Job(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending"
        PROCESSING = "processing"
        COMPLETED = "completed"
        FAILED = "failed"
        CANCELLED = "cancelled"

    class SourceType(models.TextChoices):
        UPLOAD = "upload"
        LINKED_VIDEO = "linked_video"
        DIRECT_URL = "direct_url"

    TERMINAL = (Status.COMPLETED, Status.FAILED, Status.CANCELLED)

    # Titles the intake flow assigns before a transcript exists
    PLACEHOLDER_TITLES = frozenset({"Processing...", "YouTube Video", "Transcription", ""})

    MANUAL_UPLOAD_REQUIRED = "manual_upload_required"

    job_id = models.CharField(max_length=64, unique=True)   # assigned by the intake flow
    user_id = models.CharField(max_length=64, db_index=True, blank=True, default="")
    user_tier = models.CharField(max_length=16, default="free")
    source_type = models.CharField(max_length=16, choices=SourceType.choices, default=SourceType.UPLOAD)
    source_url = models.TextField()                          # user-supplied, never rewritten
    processed_url = models.TextField(blank=True, default="")
    source_identity_key = models.CharField(max_length=128, blank=True, default="", db_index=True)
    high_accuracy = models.BooleanField(default=False)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    failure_reason = models.CharField(max_length=255, blank=True, default="")
    language = models.CharField(max_length=16, blank=True, default="")
    duration_sec = models.PositiveIntegerField(null=True, blank=True)
    original_duration_sec = models.PositiveIntegerField(null=True, blank=True)
    cost_minutes = models.DecimalField(max_digits=10, decimal_places=3, null=True, blank=True)
    title = models.CharField(max_length=255, blank=True, default="Processing...")
    delivery_claimed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    objects = JobQuerySet.as_manager()

    class Meta:
        indexes = [models.Index(fields=["source_identity_key", "status"])]

    def __str__(self):
        return f"{self.job_id} [{self.status}]"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL


class Result(models.Model):
    class Format(models.TextChoices):
        TXT = "txt"
        JSON = "json"
        SRT = "srt"
        VTT = "vtt"
        MD = "md"

    job = models.ForeignKey(Job, to_field="job_id", on_delete=models.CASCADE, related_name="results")
    format = models.CharField(max_length=8, choices=Format.choices)
    content = models.TextField()
    size_bytes = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [models.UniqueConstraint(fields=["job", "format"], name="uniq_result_job_format")]

    @classmethod
    def upsert(cls, job_id: str, fmt: str, content: str) -> "Result":
        obj, _ = cls.objects.update_or_create(
            job_id=job_id,
            format=fmt,
            defaults={
                "content": content,
                "size_bytes": len(content.encode("utf-8")),
                "created_at": timezone.now(),
            },
        )
        return obj


class QueueEntry(models.Model):
    job = models.ForeignKey(Job, to_field="job_id", on_delete=models.CASCADE, related_name="queue_entries")
    user_id = models.CharField(max_length=64, db_index=True)
    tier = models.CharField(max_length=16, default="free")
    done = models.BooleanField(default=False)
    picked_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "pk"]
        verbose_name_plural = "queue entries"


class PackType(models.TextChoices):
    STANDARD = "standard"
    HIGH_ACCURACY = "high_accuracy"


class MinutePack(models.Model):
    user_id = models.CharField(max_length=64, db_index=True)
    pack_type = models.CharField(max_length=16, choices=PackType.choices, default=PackType.STANDARD)
    minutes_total = models.DecimalField(max_digits=10, decimal_places=3)
    minutes_left = models.DecimalField(max_digits=10, decimal_places=3)
    created_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField(null=True, blank=True)   # null: never expires
    order_no = models.CharField(max_length=128, blank=True, default="")

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=Q(minutes_left__gte=0) & Q(minutes_left__lte=models.F("minutes_total")),
                name="pack_minutes_left_in_range",
            ),
        ]

    def __str__(self):
        return f"{self.user_id} {self.pack_type} {self.minutes_left}/{self.minutes_total}"


class UsageRecord(models.Model):
    class ModelType(models.TextChoices):
        STANDARD = "standard"
        HIGH_ACCURACY = "high_accuracy"
        PACK_STANDARD = "pack_standard"
        PACK_HIGH_ACCURACY = "pack_high_accuracy"

    class SubscriptionType(models.TextChoices):
        SUBSCRIPTION = "subscription"
        MINUTE_PACK = "minute_pack"

    user_id = models.CharField(max_length=64, db_index=True)
    date = models.DateField(default=timezone.localdate)
    minutes = models.DecimalField(max_digits=10, decimal_places=2)
    model_type = models.CharField(max_length=24, choices=ModelType.choices)
    subscription_type = models.CharField(max_length=16, choices=SubscriptionType.choices, blank=True, default="")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["created_at", "pk"]
