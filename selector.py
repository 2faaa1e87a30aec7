# selector.py
"""Pick the credential a new lease should be bound to.

Ownership is read as a tagged scope rather than raw strings: a credential can
serve a category directly, serve every category of a platform, or be universal
(``all``). A category-scoped match beats a platform-scoped one, which beats a
universal one. Within a tier the lowest credential id wins.
"""
import enum
import logging
from datetime import datetime

from pydantic import ValidationError

from clock import day_is_over
from schemas import WILDCARD, Credential, Slot
from store import CREDENTIALS, Store

logger = logging.getLogger(__name__)

CREDENTIAL_PREFIX = "cred"


class Scope(enum.IntEnum):
    # lower value = higher priority
    CATEGORY = 1
    PLATFORM = 2
    UNIVERSAL = 3


def match_scopes(cred: Credential, slot: Slot) -> set[Scope]:
    scopes = set()
    slot_id = (slot.id or "").strip().lower()
    platform = (slot.platform or "").strip().lower()
    universal = WILDCARD in cred.slots or WILDCARD in cred.platforms

    # the wildcard only ever earns the universal tier
    if slot_id and slot_id in cred.slots:
        scopes.add(Scope.CATEGORY)
    if platform and platform in cred.platforms:
        scopes.add(Scope.PLATFORM)
    if universal:
        scopes.add(Scope.UNIVERSAL)
    return scopes


def best_scope(cred: Credential, slot: Slot) -> Scope | None:
    scopes = match_scopes(cred, slot)
    return min(scopes) if scopes else None


def is_available(cred: Credential, now: datetime) -> bool:
    if cred.locked or cred.usage_exhausted:
        return False
    if day_is_over(cred.expires_at, now):
        return False
    # a bound lease must always have something to show
    return cred.has_payload


def load_credentials(store: Store) -> list[Credential]:
    creds = []
    for record in store.scan(CREDENTIALS):
        cred_id = record.key.rsplit("/", 1)[-1]
        if not cred_id.lower().startswith(CREDENTIAL_PREFIX):
            continue
        try:
            creds.append(Credential.model_validate({**record.data, "id": cred_id}))
        except ValidationError as exc:
            logger.warning("skipping malformed credential %s (%d errors)", cred_id, exc.error_count())
    return creds


def select_credential(store: Store, slot: Slot, now: datetime) -> Credential | None:
    """Return the best eligible credential for ``slot``, or None."""
    best: tuple[Scope, str, Credential] | None = None
    for cred in load_credentials(store):
        if not is_available(cred, now):
            continue
        scope = best_scope(cred, slot)
        if scope is None:
            continue
        rank = (scope, cred.id, cred)
        if best is None or rank[:2] < best[:2]:
            best = rank

    if best is None:
        logger.info("no eligible credential for slot=%s platform=%s", slot.id, slot.platform)
        return None
    logger.info("selected %s for slot=%s (%s)", best[2].id, slot.id, best[0].name.lower())
    return best[2]
