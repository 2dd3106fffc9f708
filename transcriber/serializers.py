from rest_framework import serializers

from .models import Job, Result

USER_TIERS = ("free", "basic", "pro", "premium")


class ResultSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Result
        fields = ["format", "size_bytes", "created_at"]


class JobSerializer(serializers.ModelSerializer):
    results = ResultSummarySerializer(many=True, read_only=True)

    class Meta:
        model = Job
        fields = [
            "job_id",
            "status",
            "failure_reason",
            "source_type",
            "source_url",
            "processed_url",
            "title",
            "language",
            "high_accuracy",
            "duration_sec",
            "original_duration_sec",
            "cost_minutes",
            "results",
            "created_at",
            "completed_at",
        ]


class VideoPrefetchSerializer(serializers.Serializer):
    link = serializers.CharField(required=False, allow_blank=True)
    title = serializers.CharField(required=False, allow_blank=True)
    duration = serializers.FloatField(required=False, allow_null=True, min_value=0)
    isUploadedAsset = serializers.BooleanField(required=False, default=False)


class PrepareJobSerializer(serializers.Serializer):
    job_id = serializers.CharField(max_length=64)
    source_url = serializers.CharField(required=False, allow_blank=True)
    source_type = serializers.ChoiceField(choices=Job.SourceType.choices, required=False)
    user_tier = serializers.ChoiceField(choices=USER_TIERS, required=False)
    high_accuracy = serializers.BooleanField(required=False, allow_null=True, default=None)
    enable_diarization = serializers.BooleanField(required=False, default=False)
    preferred_language = serializers.CharField(required=False, allow_blank=True, max_length=16, default="")
    video_prefetch = VideoPrefetchSerializer(required=False, allow_null=True)


class ProcessOneSerializer(serializers.Serializer):
    job_id = serializers.CharField(max_length=64, required=False, allow_blank=True)


class UsageSummarySerializer(serializers.Serializer):
    subscriptionTotal = serializers.FloatField()
    packMinutes = serializers.FloatField()
    packAllowance = serializers.FloatField()
    totalAvailable = serializers.FloatField()
    totalUsed = serializers.FloatField()
    remaining = serializers.FloatField()
    isUnlimited = serializers.BooleanField()
    percentageUsed = serializers.FloatField()
