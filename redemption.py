# redemption.py
import enum
import logging
import re
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

import config
from clock import (
    add_hours,
    format_wall_clock,
    is_past,
    iso,
    parse_iso,
    parse_wall_clock,
    utcnow,
)
from errors import AlreadyUsedUp, Expired, Hidden, Internal, NotFound, RedeemError, Revoked
from optimistic import compare_and_retry
from schemas import PromoCode, Slot, Transaction
from selector import select_credential
from store import (
    CREDENTIALS,
    FLAGS,
    PROMO_CODES,
    SLOTS,
    TRANSACTIONS,
    KeyExists,
    Store,
    StoreError,
    StoredRecord,
    key_for,
)

logger = logging.getLogger(__name__)

LABEL_MODES = ("platform", "name")


class Outcome(str, enum.Enum):
    ASSIGNED = "claimed_assigned"
    UNASSIGNED = "claimed_unassigned"


@dataclass
class ClaimResult:
    lease: Transaction
    outcome: Outcome

    @property
    def assigned(self) -> bool:
        return self.outcome is Outcome.ASSIGNED


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def parse_duration_hours(value: Any, default: float | None = None) -> float:
    """Lease length in hours from a slot's ``duration`` setting.

    Numbers are hours, anything mentioning "day" is 24, otherwise the leading
    integer of the text; unreadable values fall back to ``default``.
    """
    fallback = config.DEFAULT_LEASE_HOURS if default is None else default
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        return value if value > 0 else fallback

    text = str(value).strip().lower()
    if "day" in text:
        return 24
    match = re.match(r"\d+", text)
    if match and int(match.group()) > 0:
        return int(match.group())
    return fallback


def _valid_mode(value: Any) -> str | None:
    mode = str(value or "").strip().lower()
    return mode if mode in LABEL_MODES else None


def resolve_label_mode(store: Store, slot: Slot) -> str:
    mode = _valid_mode(slot.label_mode)
    if mode:
        return mode

    record = store.get(FLAGS)
    flags = record.data if record else {}
    mode = _valid_mode(flags.get("approve_flow_label_mode"))
    if mode:
        return mode
    # legacy boolean switch
    return "platform" if flags.get("approve_flow_use_platform_label") is True else "name"


def build_headline(mode: str, platform: str | None, slot_name: str | None) -> str:
    if mode == "platform" and platform:
        return f"{platform} Account"
    return f"{slot_name or platform or 'Premium'} Account"


class RedemptionEngine:
    def __init__(
        self,
        store: Store,
        clock: Callable = utcnow,
        sleep: Callable[[float], None] = time.sleep,
        attempts: int | None = None,
        write_backoff: float | None = None,
        race_backoff: float | None = None,
    ):
        self.store = store
        self.clock = clock
        self.sleep = sleep
        self.attempts = attempts or config.CLAIM_MAX_ATTEMPTS
        self.write_backoff = config.CLAIM_WRITE_BACKOFF if write_backoff is None else write_backoff
        self.race_backoff = config.CLAIM_RACE_BACKOFF if race_backoff is None else race_backoff

    # ----------------------------------------------------------------
    # Claim
    # ----------------------------------------------------------------

    def claim(self, code: str, consumer_id: str) -> ClaimResult:
        code_val = normalize_code(code)
        if not code_val:
            raise NotFound()

        try:
            self._check_existing_lease(code_val)
            promo = self._consume(code_val, consumer_id)
            slot = self._resolve_slot(promo)
            lease = self._open_lease(promo, slot, consumer_id)
            if lease.credential_id is None:
                lease = self._assign(lease, slot)
        except RedeemError:
            raise
        except (SQLAlchemyError, StoreError, ValidationError):
            logger.exception("claim of %s failed in the store", code_val)
            raise Internal()

        outcome = Outcome.ASSIGNED if lease.credential_id else Outcome.UNASSIGNED
        logger.info("code %s claimed by %s: %s", code_val, consumer_id, outcome.value)
        return ClaimResult(lease=lease, outcome=outcome)

    def _consume(self, code_val: str, consumer_id: str) -> PromoCode:
        claim_id = uuid.uuid4().hex

        def check(current: StoredRecord | None) -> None:
            if current is None:
                raise NotFound()
            promo = PromoCode.model_validate(current.data)
            if promo.revoked:
                raise Revoked()
            expires_at = parse_iso(promo.expires_at)
            if expires_at is not None and expires_at <= self.clock():
                raise Expired()
            if promo.used_count >= promo.max_uses:
                raise AlreadyUsedUp()

        def mutate(current: StoredRecord) -> dict[str, Any]:
            at = iso(self.clock())
            used_by = list(current.data.get("used_by") or [])
            used_by.append({"user_id": consumer_id, "at": at, "claim_id": claim_id})
            return {
                "used_count": int(current.data.get("used_count") or 0) + 1,
                "last_used_by": consumer_id,
                "last_used_at": at,
                "used_by": used_by,
            }

        def confirm(after: StoredRecord, fields: dict[str, Any]) -> bool:
            # later claimants may already have counted on top of ours
            used_by = after.data.get("used_by") or []
            return (
                int(after.data.get("used_count") or 0) >= fields["used_count"]
                and any(entry.get("claim_id") == claim_id for entry in used_by)
            )

        record = compare_and_retry(
            self.store,
            key_for(PROMO_CODES, code_val),
            check=check,
            mutate=mutate,
            confirm=confirm,
            attempts=self.attempts,
            write_backoff=self.write_backoff,
            race_backoff=self.race_backoff,
            sleep=self.sleep,
        )
        return PromoCode.model_validate(record.data)

    def _resolve_slot(self, promo: PromoCode) -> Slot:
        if promo.mode == "slot" and promo.slot_id:
            record = self.store.get(key_for(SLOTS, promo.slot_id))
            if record is not None:
                return Slot.model_validate({**record.data, "id": promo.slot_id})
            logger.warning("slot %s of code %s is gone, using the code's copy", promo.slot_id, promo.code)
            return Slot(id=promo.slot_id, name=promo.slot_name, platform=promo.platform)
        # platform-mode codes draw from the platform pool only
        return Slot(id="", name=promo.platform, platform=promo.platform)

    def _open_lease(self, promo: PromoCode, slot: Slot, consumer_id: str) -> Transaction:
        now = self.clock()
        hours = parse_duration_hours(slot.duration)
        mode = resolve_label_mode(self.store, slot)
        platform = slot.platform or promo.platform
        lease = Transaction(
            code=promo.code,
            user_id=consumer_id,
            platform=platform,
            slot_id=slot.id or None,
            slot_name=slot.name or promo.slot_name,
            label_mode=mode,
            headline=build_headline(mode, platform, slot.name or promo.slot_name),
            start_time=format_wall_clock(now),
            end_time=format_wall_clock(add_hours(now, hours)),
            created_at=iso(now),
        )

        key = key_for(TRANSACTIONS, promo.code)
        try:
            self.store.create(key, lease.model_dump())
        except KeyExists:
            # multi-use codes share the lease made by their first claim
            record = self.store.get(key)
            if record is None:
                raise
            existing = Transaction.model_validate(record.data)
            self._ensure_reusable(existing)
            logger.info("code %s already has a lease, reusing it", promo.code)
            return existing
        return lease

    def _check_existing_lease(self, code_val: str) -> None:
        record = self.store.get(key_for(TRANSACTIONS, code_val))
        if record is not None:
            self._ensure_reusable(Transaction.model_validate(record.data))

    def _ensure_reusable(self, lease: Transaction) -> None:
        # a hidden or lapsed lease is read-only; later claims must not revive it
        if lease.hidden:
            raise Hidden()
        if is_past(parse_wall_clock(lease.end_time), self.clock()):
            raise Expired("This subscription has expired")

    def _assign(self, lease: Transaction, slot: Slot) -> Transaction:
        cred = select_credential(self.store, slot, self.clock())
        if cred is None:
            return lease

        binding = {
            "credential_id": cred.id,
            "last_email": cred.email,
            "last_password": cred.password,
        }
        self.store.patch(key_for(TRANSACTIONS, lease.code), binding)

        if cred.max_usage == 0 or cred.used < cred.max_usage:
            # best effort: two binds racing on one credential may both count once
            try:
                self.store.patch(key_for(CREDENTIALS, cred.id), {"used": cred.used + 1})
            except (SQLAlchemyError, StoreError):
                logger.warning("could not bump usage of %s for %s", cred.id, lease.code, exc_info=True)

        logger.info("lease %s bound to %s", lease.code, cred.id)
        return lease.model_copy(update=binding)
