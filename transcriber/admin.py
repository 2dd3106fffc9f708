from django.contrib import admin

from .models import Job, MinutePack, QueueEntry, Result, UsageRecord


@admin.register(Job)
class JobAdmin(admin.ModelAdmin):
    list_display = ("job_id", "user_id", "status", "high_accuracy", "duration_sec", "cost_minutes", "created_at")
    list_filter = ("status", "source_type", "high_accuracy")
    search_fields = ("job_id", "user_id", "source_identity_key")


@admin.register(Result)
class ResultAdmin(admin.ModelAdmin):
    list_display = ("job", "format", "size_bytes", "created_at")


@admin.register(QueueEntry)
class QueueEntryAdmin(admin.ModelAdmin):
    list_display = ("job", "user_id", "tier", "done", "picked_at", "created_at")
    list_filter = ("done",)


@admin.register(MinutePack)
class MinutePackAdmin(admin.ModelAdmin):
    list_display = ("user_id", "pack_type", "minutes_left", "minutes_total", "expires_at", "order_no")
    search_fields = ("user_id", "order_no")


@admin.register(UsageRecord)
class UsageRecordAdmin(admin.ModelAdmin):
    list_display = ("user_id", "date", "minutes", "model_type", "subscription_type")
    list_filter = ("model_type", "subscription_type")
