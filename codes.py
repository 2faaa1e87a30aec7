# codes.py
import logging
import re
import secrets
from typing import Callable

from clock import iso, parse_iso, utcnow
from errors import InvalidRequest, NotFound
from redemption import normalize_code
from schemas import GenCodeIn, PromoCode, Slot
from store import PROMO_CODES, SLOTS, TRANSACTIONS, KeyExists, Store, key_for

logger = logging.getLogger(__name__)

CODE_PREFIX = "OOR"
CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
CUSTOM_CODE_RE = re.compile(r"^OOR[A-Z0-9]{6,20}$")
UNIQUE_ATTEMPTS = 10


def generate_code(length: int = 12) -> str:
    body = "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))
    return f"{CODE_PREFIX}{body}"


def is_valid_custom_code(code: str) -> bool:
    return bool(CUSTOM_CODE_RE.match(code))


def code_exists_anywhere(store: Store, code: str) -> bool:
    return store.exists(key_for(PROMO_CODES, code)) or store.exists(key_for(TRANSACTIONS, code))


def list_slots(store: Store) -> list[dict]:
    slots = []
    for record in store.scan(SLOTS):
        slot = Slot.model_validate({**record.data, "id": record.key.rsplit("/", 1)[-1]})
        slots.append({
            "id": slot.id,
            "name": slot.name or slot.id,
            "platform": slot.platform,
            "amount": slot.required_amount,
            "enabled": slot.enabled,
        })
    return slots


def issue_code(store: Store, body: GenCodeIn, clock: Callable = utcnow) -> PromoCode:
    if body.mode not in ("slot", "platform"):
        raise InvalidRequest("mode must be 'slot' or 'platform'")

    slot: Slot | None = None
    platform = body.platform or None
    if body.mode == "slot":
        if not body.slotId:
            raise InvalidRequest("slotId is required for mode=slot")
        record = store.get(key_for(SLOTS, body.slotId))
        if record is None:
            raise NotFound("Slot not found")
        slot = Slot.model_validate({**record.data, "id": body.slotId})
        if not slot.enabled:
            raise InvalidRequest("Slot is disabled")
        platform = slot.platform or platform
    elif not platform:
        raise InvalidRequest("platform is required for mode=platform")

    if body.expiresAt and parse_iso(body.expiresAt) is None:
        raise InvalidRequest("expiresAt must be an ISO-8601 timestamp")

    promo = PromoCode(
        code="",
        mode=body.mode,
        slot_id=slot.id if slot else None,
        slot_name=slot.name if slot else None,
        platform=platform,
        amount=slot.required_amount if slot else None,
        created_by=body.createdBy,
        created_at=iso(clock()),
        custom=bool(body.customCode),
        max_uses=body.maxUses,
        expires_at=body.expiresAt,
    )

    if body.customCode:
        custom = normalize_code(body.customCode)
        if not is_valid_custom_code(custom):
            raise InvalidRequest("customCode must match pattern: OOR[A-Z0-9]{6,20}")
        if code_exists_anywhere(store, custom):
            raise InvalidRequest("customCode already exists")
        candidates = [custom]
    else:
        candidates = (generate_code() for _ in range(UNIQUE_ATTEMPTS))

    for candidate in candidates:
        if code_exists_anywhere(store, candidate):
            continue
        promo.code = candidate
        try:
            store.create(key_for(PROMO_CODES, candidate), promo.model_dump())
        except KeyExists:
            continue
        logger.info("issued %s (%s, max_uses=%d) by %s", candidate, body.mode, body.maxUses, body.createdBy)
        return promo

    if body.customCode:
        raise InvalidRequest("customCode already exists")
    raise InvalidRequest("Failed to generate unique code, try again")


def revoke_code(store: Store, code: str) -> PromoCode:
    code_val = normalize_code(code)
    key = key_for(PROMO_CODES, code_val)
    if not store.exists(key):
        raise NotFound()
    store.patch(key, {"revoked": True})
    logger.info("code %s revoked", code_val)
    return PromoCode.model_validate(store.get(key).data)
