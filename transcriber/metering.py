"""
Usage ledger: charges a finished job's minutes against the user's funding
sources and records each charge as an append-only UsageRecord.

Free users draw from standard minute packs first; whatever packs don't cover
is recorded as subscription-type overage. Paid users draw from the monthly
subscription allowance first (high-accuracy work additionally bounded by the
tier's high-accuracy sub-allowance), then packs, then overage.
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F, Q, Sum
from django.utils import timezone
from django.utils.module_loading import import_string

from .models import Job, MinutePack, PackType, UsageRecord

logger = logging.getLogger(__name__)

PAID_TIERS = ("basic", "pro", "premium")

CENT = Decimal("0.01")
MILLI = Decimal("0.001")
ZERO = Decimal("0")


@dataclass(frozen=True)
class QuotaLimits:
    monthly_minutes: Optional[int]              # None: unlimited
    high_accuracy_minutes: Optional[int] = None  # None: no separate sub-allowance


QUOTA_LIMITS = {
    "free": QuotaLimits(monthly_minutes=30),
    "basic": QuotaLimits(monthly_minutes=500),
    "pro": QuotaLimits(monthly_minutes=2000, high_accuracy_minutes=200),
    "premium": QuotaLimits(monthly_minutes=None),
}


def quota_limits(tier: str) -> QuotaLimits:
    return QUOTA_LIMITS.get((tier or "free").lower(), QUOTA_LIMITS["free"])


def is_paid_tier(tier: str) -> bool:
    return (tier or "").lower() in PAID_TIERS


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def round2(value) -> Decimal:
    return _dec(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round3(value) -> Decimal:
    return _dec(value).quantize(MILLI, rounding=ROUND_HALF_UP)


def tier_from_jobs(user_id: str) -> str:
    """Default tier lookup: the tier the intake flow stamped on the user's latest job."""
    tier = (
        Job.objects.filter(user_id=user_id)
        .order_by("-created_at", "-pk")
        .values_list("user_tier", flat=True)
        .first()
    )
    return tier or "free"


def resolve_user_tier(user_id: str) -> str:
    return import_string(settings.USER_TIER_RESOLVER)(user_id)


def month_start(today=None):
    today = today or timezone.localdate()
    return today.replace(day=1)


def add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


# ---------------------------------------------------------------------------
# Minute packs
# ---------------------------------------------------------------------------

def active_packs(user_id: str, pack_type: str = PackType.STANDARD, now=None):
    """Spendable packs, soonest expiry first; packs that never expire come last."""
    now = now or timezone.now()
    return (
        MinutePack.objects.filter(user_id=user_id, pack_type=pack_type, minutes_left__gt=0)
        .filter(Q(expires_at__isnull=True) | Q(expires_at__gt=now))
        .order_by(F("expires_at").asc(nulls_last=True), "created_at", "pk")
    )


def deduct_from_packs(user_id: str, minutes, pack_type: str = PackType.STANDARD) -> Decimal:
    """
    Consume ``minutes`` from the user's packs; returns the part packs could not cover.

    Rows are locked for the duration so concurrent settlements for the same user
    serialize instead of overwriting each other's decrements.
    """
    remain = round3(minutes)
    if remain <= ZERO:
        return ZERO

    with transaction.atomic():
        for pack in active_packs(user_id, pack_type).select_for_update():
            if remain <= ZERO:
                break
            use = min(pack.minutes_left, remain)
            if use <= ZERO:
                continue
            updated = MinutePack.objects.filter(pk=pack.pk, minutes_left__gte=use).update(
                minutes_left=F("minutes_left") - use
            )
            if updated:
                remain -= use
    return remain


def pack_balance(user_id: str, pack_type: str = PackType.STANDARD) -> dict:
    totals = active_packs(user_id, pack_type).aggregate(left=Sum("minutes_left"), total=Sum("minutes_total"))
    return {"left": totals["left"] or ZERO, "total": totals["total"] or ZERO}


def grant_pack(user_id: str, pack_type: str, minutes, valid_months: int = 12,
               order_no: Optional[str] = None) -> Optional[MinutePack]:
    """
    Create a purchased pack. A redelivered purchase event carrying the same
    ``order_no`` grants nothing the second time.
    """
    amount = _dec(minutes).to_integral_value(rounding=ROUND_CEILING)
    if amount <= ZERO:
        return None

    with transaction.atomic():
        if order_no and MinutePack.objects.filter(order_no=order_no, pack_type=pack_type).exists():
            logger.info("Pack for order %s already granted", order_no)
            return None
        now = timezone.now()
        pack = MinutePack.objects.create(
            user_id=user_id,
            pack_type=pack_type,
            minutes_total=amount,
            minutes_left=amount,
            created_at=now,
            expires_at=add_months(now, max(1, int(valid_months or 12))),
            order_no=order_no or "",
        )
    logger.info("Granted %s %s minutes to %s", amount, pack_type, user_id)
    return pack


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

def record_usage(user_id: str, minutes, model_type: str,
                 subscription_type: str = UsageRecord.SubscriptionType.SUBSCRIPTION) -> Optional[UsageRecord]:
    amount = round2(minutes)
    if amount <= ZERO:
        return None
    return UsageRecord.objects.create(
        user_id=user_id,
        minutes=amount,
        model_type=model_type,
        subscription_type=subscription_type,
    )


def monthly_usage(user_id: str) -> tuple[Decimal, Decimal]:
    """(subscription minutes, high-accuracy subscription minutes) since the 1st."""
    qs = UsageRecord.objects.filter(user_id=user_id, date__gte=month_start()).exclude(model_type__startswith="pack_")
    totals = qs.aggregate(
        total=Sum("minutes"),
        ha=Sum("minutes", filter=Q(model_type=UsageRecord.ModelType.HIGH_ACCURACY)),
    )
    return totals["total"] or ZERO, totals["ha"] or ZERO


def _charge_packs(user_id: str, minutes: Decimal, high_accuracy: bool, overage_type: str) -> None:
    """Spend standard packs; what they cannot cover is recorded as ``overage_type``."""
    left = deduct_from_packs(user_id, minutes, PackType.STANDARD)
    pack_type = (
        UsageRecord.ModelType.PACK_HIGH_ACCURACY if high_accuracy else UsageRecord.ModelType.PACK_STANDARD
    )
    record_usage(user_id, minutes - left, pack_type, UsageRecord.SubscriptionType.MINUTE_PACK)
    record_usage(user_id, left, overage_type, UsageRecord.SubscriptionType.SUBSCRIPTION)


def _subscription_room(user_id: str, limits: QuotaLimits, high_accuracy: bool) -> Optional[Decimal]:
    if limits.monthly_minutes is None:
        return None
    used, used_ha = monthly_usage(user_id)
    room = max(ZERO, Decimal(limits.monthly_minutes) - used)
    if high_accuracy and limits.high_accuracy_minutes is not None:
        room = min(room, max(ZERO, Decimal(limits.high_accuracy_minutes) - used_ha))
    return room


def _settle(user_id: str, minutes: Decimal, high_accuracy: bool, tier: str) -> None:
    model_type = UsageRecord.ModelType.HIGH_ACCURACY if high_accuracy else UsageRecord.ModelType.STANDARD

    if not is_paid_tier(tier):
        # free overage is always billed as standard
        _charge_packs(user_id, minutes, high_accuracy, UsageRecord.ModelType.STANDARD)
        return

    room = _subscription_room(user_id, quota_limits(tier), high_accuracy)
    from_subscription = minutes if room is None else min(minutes, room)
    record_usage(user_id, from_subscription, model_type, UsageRecord.SubscriptionType.SUBSCRIPTION)

    remain = minutes - from_subscription
    if remain > ZERO:
        _charge_packs(user_id, remain, high_accuracy, model_type)


def settle(user_id: str, minutes, high_accuracy: bool = False, user_tier: Optional[str] = None) -> None:
    """
    Charge ``minutes`` to ``user_id``. Never raises: if the layered path fails,
    a single fallback record is written so the charge is not lost.
    """
    amount = round3(minutes or 0)
    if not user_id or amount <= ZERO:
        return
    try:
        tier = user_tier or resolve_user_tier(user_id)
        with transaction.atomic():
            _settle(user_id, amount, high_accuracy, tier)
    except Exception:
        logger.exception("Layered metering failed for %s (%s min), writing fallback record", user_id, amount)
        model_type = UsageRecord.ModelType.HIGH_ACCURACY if high_accuracy else UsageRecord.ModelType.STANDARD
        try:
            record_usage(user_id, max(CENT, round2(amount)), model_type)
        except Exception:
            logger.exception("Fallback usage record failed for %s", user_id)


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

def usage_summary(user_id: str, tier: Optional[str] = None) -> dict:
    tier = tier or resolve_user_tier(user_id)
    limits = quota_limits(tier)
    is_unlimited = limits.monthly_minutes is None

    packs = pack_balance(user_id, PackType.STANDARD)
    subscription_total = 0 if not is_paid_tier(tier) else (-1 if is_unlimited else limits.monthly_minutes)

    used = UsageRecord.objects.filter(user_id=user_id, date__gte=month_start()).aggregate(
        total=Sum("minutes")
    )["total"] or ZERO

    if is_unlimited:
        total = Decimal(-1)
        remaining = Decimal(-1)
        percentage = 0.0
    else:
        base = Decimal(settings.FREE_BASE_MINUTES) if subscription_total == 0 else ZERO
        total = base + Decimal(subscription_total) + packs["total"]
        remaining = max(ZERO, total - used)
        percentage = float(used / total * 100) if total > 0 else 0.0

    return {
        "subscriptionTotal": float(subscription_total),
        "packMinutes": float(packs["left"]),
        "packAllowance": float(packs["total"]),
        "totalAvailable": float(total),
        "totalUsed": float(round2(used)),
        "remaining": float(round2(remaining)),
        "isUnlimited": is_unlimited,
        "percentageUsed": round(percentage, 2),
    }
