from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from django.db.models import Sum
from django.utils import timezone

from transcriber import metering
from transcriber.models import MinutePack, PackType, UsageRecord

pytestmark = pytest.mark.django_db

USER = "u-1"


def _pack(minutes, expires_in_days=None, pack_type=PackType.STANDARD, user=USER, **extra):
    expires_at = timezone.now() + timedelta(days=expires_in_days) if expires_in_days is not None else None
    return MinutePack.objects.create(
        user_id=user,
        pack_type=pack_type,
        minutes_total=Decimal(minutes),
        minutes_left=Decimal(minutes),
        expires_at=expires_at,
        **extra,
    )


def _left(user=USER) -> Decimal:
    return MinutePack.objects.filter(user_id=user).aggregate(s=Sum("minutes_left"))["s"] or Decimal("0")


def _records(user=USER):
    return list(UsageRecord.objects.filter(user_id=user).values_list("model_type", "subscription_type", "minutes"))


@pytest.mark.parametrize("minutes", [Decimal("3"), Decimal("12.5"), Decimal("40"), Decimal("0.017")])
def test_pack_deduction_conserves_minutes(minutes):
    _pack(10, expires_in_days=3)
    _pack(5)
    before = _left()

    remainder = metering.deduct_from_packs(USER, minutes)

    assert before - _left() + remainder == minutes
    assert remainder >= 0


def test_oldest_expiry_first():
    late = _pack(10, expires_in_days=5)
    early = _pack(10, expires_in_days=1)

    assert metering.deduct_from_packs(USER, 15) == 0

    early.refresh_from_db()
    late.refresh_from_db()
    assert early.minutes_left == 0
    assert late.minutes_left == 5


def test_never_expiring_packs_are_consumed_last():
    forever = _pack(10)
    dated = _pack(4, expires_in_days=30)

    assert metering.deduct_from_packs(USER, 6) == 0

    forever.refresh_from_db()
    dated.refresh_from_db()
    assert dated.minutes_left == 0
    assert forever.minutes_left == 8


def test_expired_and_other_type_packs_are_not_spendable():
    expired = _pack(10, expires_in_days=-1)
    _pack(10, pack_type=PackType.HIGH_ACCURACY)

    assert metering.deduct_from_packs(USER, 3) == 3
    expired.refresh_from_db()
    assert expired.minutes_left == 10


def test_free_user_without_packs_records_standard_usage():
    metering.settle(USER, Decimal("0.017"), user_tier="free")

    assert _records() == [("standard", "subscription", Decimal("0.02"))]


def test_free_user_draws_from_packs_before_overage():
    _pack(1)

    metering.settle(USER, Decimal("2.5"), user_tier="free")

    assert _left() == 0
    assert _records() == [
        ("pack_standard", "minute_pack", Decimal("1.00")),
        ("standard", "subscription", Decimal("1.50")),
    ]


def test_free_user_fully_covered_by_pack_writes_no_overage():
    _pack(10)

    metering.settle(USER, Decimal("2.5"), user_tier="free")

    assert _left() == Decimal("7.5")
    assert _records() == [("pack_standard", "minute_pack", Decimal("2.50"))]


def test_paid_user_uses_subscription_first():
    pack = _pack(10)

    metering.settle(USER, Decimal("10"), user_tier="basic")

    pack.refresh_from_db()
    assert pack.minutes_left == 10
    assert _records() == [("standard", "subscription", Decimal("10.00"))]


def test_pro_high_accuracy_bounded_by_sub_allowance_then_packs_then_overage():
    metering.record_usage(USER, 195, UsageRecord.ModelType.HIGH_ACCURACY)
    _pack(3)

    metering.settle(USER, Decimal("10"), high_accuracy=True, user_tier="pro")

    assert _records()[1:] == [
        ("high_accuracy", "subscription", Decimal("5.00")),
        ("pack_high_accuracy", "minute_pack", Decimal("3.00")),
        ("high_accuracy", "subscription", Decimal("2.00")),
    ]
    assert _left() == 0


def test_free_high_accuracy_job_bills_packs_as_high_accuracy_and_overage_as_standard():
    _pack(1)

    metering.settle(USER, Decimal("3"), high_accuracy=True, user_tier="free")

    assert _records() == [
        ("pack_high_accuracy", "minute_pack", Decimal("1.00")),
        ("standard", "subscription", Decimal("2.00")),
    ]


def test_premium_is_never_capped():
    metering.record_usage(USER, 100000, UsageRecord.ModelType.STANDARD)

    metering.settle(USER, Decimal("30"), user_tier="premium")

    assert _records()[-1] == ("standard", "subscription", Decimal("30.00"))


def test_settle_falls_back_to_single_record(monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("ledger down")

    monkeypatch.setattr(metering, "_settle", boom)

    metering.settle(USER, Decimal("0.004"), user_tier="free")

    assert _records() == [("standard", "subscription", Decimal("0.01"))]


def test_zero_minutes_writes_nothing():
    metering.settle(USER, 0, user_tier="free")
    assert metering.record_usage(USER, Decimal("0.004"), UsageRecord.ModelType.STANDARD) is None
    assert _records() == []


def test_tier_resolved_from_latest_job_when_not_given(make_job):
    make_job(user_id=USER, user_tier="basic")
    _pack(10)

    metering.settle(USER, Decimal("1"))

    assert _records() == [("standard", "subscription", Decimal("1.00"))]


def test_grant_pack_dedups_order_and_rounds_up():
    pack = metering.grant_pack(USER, PackType.STANDARD, Decimal("10.2"), valid_months=12, order_no="ord-1")
    again = metering.grant_pack(USER, PackType.STANDARD, 10, order_no="ord-1")

    assert again is None
    assert MinutePack.objects.filter(user_id=USER).count() == 1
    assert pack.minutes_total == 11
    assert pack.minutes_left == 11
    assert pack.expires_at > timezone.now() + timedelta(days=360)


def test_add_months_clamps_day():
    assert metering.add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)
    assert metering.add_months(datetime(2024, 11, 15), 3) == datetime(2025, 2, 15)


def test_usage_summary_for_free_user_with_pack():
    metering.grant_pack(USER, PackType.STANDARD, 60)
    metering.record_usage(USER, 15, UsageRecord.ModelType.STANDARD)

    summary = metering.usage_summary(USER, "free")

    assert summary == {
        "subscriptionTotal": 0.0,
        "packMinutes": 60.0,
        "packAllowance": 60.0,
        "totalAvailable": 90.0,
        "totalUsed": 15.0,
        "remaining": 75.0,
        "isUnlimited": False,
        "percentageUsed": 16.67,
    }


def test_usage_summary_for_unlimited_tier():
    summary = metering.usage_summary(USER, "premium")

    assert summary["isUnlimited"] is True
    assert summary["totalAvailable"] == -1
    assert summary["remaining"] == -1
    assert summary["percentageUsed"] == 0.0
