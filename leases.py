# leases.py
"""Operations on an existing lease (a ``transactions/<code>`` document).

Every call re-checks the lease first: missing, hidden and expired leases are
refused before anything else happens.
"""
import functools
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

import config
from clock import is_past, iso, parse_iso, parse_wall_clock, utcnow
from errors import (
    Busy,
    Expired,
    Hidden,
    Internal,
    InvalidRequest,
    NoResourceBound,
    NotFound,
    RedeemError,
    ResourceNotFound,
)
from mail_client import MailLookupClient, MailLookupError
from redemption import normalize_code
from schemas import Credential, LeaseOut, Slot, Transaction
from store import (
    CREDENTIALS,
    MAIL_FETCH_LOCKS,
    PLATFORMS,
    SLOTS,
    TRANSACTIONS,
    Conflict,
    KeyExists,
    Store,
    StoreError,
    key_for,
)
from totp import generate_time_code

logger = logging.getLogger(__name__)

DEFAULT_FEATURES = {"refresh": True, "totp": True, "mail_code": False, "invite": False}


@dataclass
class RefreshResult:
    changed: bool
    email: str | None
    password: str | None


def _store_failures_are_internal(func):
    @functools.wraps(func)
    def wrapper(self, code, *args, **kwargs):
        try:
            return func(self, code, *args, **kwargs)
        except RedeemError:
            raise
        except (SQLAlchemyError, StoreError, ValidationError):
            logger.exception("%s for %s failed in the store", func.__name__, code)
            raise Internal()
    return wrapper


class LeaseService:
    def __init__(
        self,
        store: Store,
        mail_client: MailLookupClient | None = None,
        clock: Callable = utcnow,
        sleep: Callable[[float], None] = time.sleep,
        hold_seconds: int | None = None,
        fetch_attempts: int | None = None,
    ):
        self.store = store
        self.mail_client = mail_client
        self.clock = clock
        self.sleep = sleep
        self.hold_seconds = hold_seconds or config.MAIL_FETCH_HOLD_SECONDS
        self.fetch_attempts = fetch_attempts or config.MAIL_FETCH_ATTEMPTS

    # ----------------------------------------------------------------
    # Lookups
    # ----------------------------------------------------------------

    def _load_active(self, code: str) -> Transaction:
        code_val = normalize_code(code)
        record = self.store.get(key_for(TRANSACTIONS, code_val)) if code_val else None
        if record is None:
            raise NotFound()
        lease = Transaction.model_validate(record.data)
        if lease.hidden:
            raise Hidden()
        if is_past(parse_wall_clock(lease.end_time), self.clock()):
            raise Expired("This subscription has expired")
        return lease

    def _load_credential(self, lease: Transaction) -> Credential:
        if not lease.credential_id:
            raise NoResourceBound()
        record = self.store.get(key_for(CREDENTIALS, lease.credential_id))
        if record is None:
            raise ResourceNotFound()
        return Credential.model_validate({**record.data, "id": lease.credential_id})

    def features(self, lease: Transaction) -> dict[str, bool]:
        """Which auxiliary actions this lease's platform and slot allow."""
        flags = dict(DEFAULT_FEATURES)
        if lease.platform:
            record = self.store.get(key_for(PLATFORMS, lease.platform.lower()))
            if record is not None:
                flags.update(record.data.get("features") or {})
        if lease.slot_id:
            record = self.store.get(key_for(SLOTS, lease.slot_id))
            if record is not None:
                flags.update(Slot.model_validate({**record.data, "id": lease.slot_id}).features)
        return {name: bool(enabled) for name, enabled in flags.items()}

    def invite_link(self, lease: Transaction) -> str | None:
        if lease.invite_link:
            return lease.invite_link
        if not lease.credential_id:
            return None
        record = self.store.get(key_for(CREDENTIALS, lease.credential_id))
        return record.data.get("invite_link") if record else None

    def project(self, lease: Transaction) -> LeaseOut:
        return LeaseOut(
            code=lease.code,
            platform=lease.platform,
            slot_id=lease.slot_id,
            slot_name=lease.slot_name,
            headline=lease.headline,
            label_mode=lease.label_mode,
            last_email=lease.last_email,
            last_password=lease.last_password,
            start_time=lease.start_time,
            end_time=lease.end_time,
            user_id=lease.user_id,
            invite_link=self.invite_link(lease),
            features=self.features(lease),
        )

    # ----------------------------------------------------------------
    # Client operations
    # ----------------------------------------------------------------

    @_store_failures_are_internal
    def view(self, code: str) -> LeaseOut:
        return self.project(self._load_active(code))

    @_store_failures_are_internal
    def refresh(self, code: str) -> RefreshResult:
        lease = self._load_active(code)
        cred = self._load_credential(lease)
        if not cred.has_payload:
            # keep the last good login rather than blank the lease
            logger.warning("credential %s of lease %s has no login", cred.id, lease.code)
            raise ResourceNotFound("The assigned account has no login right now")
        if cred.payload == lease.snapshot:
            return RefreshResult(changed=False, email=lease.last_email, password=lease.last_password)

        self.store.patch(
            key_for(TRANSACTIONS, lease.code),
            {"last_email": cred.email, "last_password": cred.password},
        )
        logger.info("lease %s picked up new login of %s", lease.code, cred.id)
        return RefreshResult(changed=True, email=cred.email, password=cred.password)

    @_store_failures_are_internal
    def time_code(self, code: str) -> tuple[str, int]:
        lease = self._load_active(code)
        cred = self._load_credential(lease)
        if not cred.totp_secret:
            raise InvalidRequest("This account has no authenticator set up")
        try:
            otp, remaining = generate_time_code(cred.totp_secret, now=self.clock().timestamp())
        except ValueError:
            logger.error("credential %s has an unusable TOTP secret", cred.id)
            raise Internal()

        if not lease.totp_delivered:
            self.store.patch(key_for(TRANSACTIONS, lease.code), {"totp_delivered": True})
        return otp, remaining

    @_store_failures_are_internal
    def fetch_mail_code(self, code: str) -> str:
        lease = self._load_active(code)
        cred = self._load_credential(lease)
        email = cred.email or lease.last_email
        if not email:
            raise NoResourceBound()
        if self.mail_client is None:
            logger.error("mail lookup requested for %s but no client is configured", lease.code)
            raise Internal()

        platform = (lease.platform or "unknown").strip().lower()
        lock_key = self._acquire_window(platform, lease.code)
        try:
            mail_code = self._poll(email, platform, lease.code)
        finally:
            self._release_window(lock_key)

        self.store.patch(
            key_for(TRANSACTIONS, lease.code),
            {"mail_code_delivered": True, "last_mail_code": mail_code},
        )
        return mail_code

    def _acquire_window(self, platform: str, holder: str) -> str:
        key = key_for(MAIL_FETCH_LOCKS, platform)
        now = self.clock()
        record = self.store.get(key)
        if record is not None:
            busy_until = parse_iso(record.data.get("busy_until"))
            if busy_until is not None and busy_until > now:
                raise Busy()

        fields = {
            "busy_until": iso(now + timedelta(seconds=self.hold_seconds)),
            "holder": holder,
        }
        try:
            if record is None:
                self.store.create(key, fields)
            else:
                self.store.patch(key, fields, expected_revision=record.revision)
        except (KeyExists, Conflict):
            raise Busy()
        logger.info("mail fetch window for %s taken by %s", platform, holder)
        return key

    def _release_window(self, key: str) -> None:
        try:
            self.store.patch(key, {"busy_until": None, "holder": None})
        except (SQLAlchemyError, StoreError):
            # the window still lapses on its own once busy_until passes
            logger.error("could not clear %s", key, exc_info=True)

    def _poll(self, email: str, platform: str, lease_code: str) -> str:
        for attempt in range(1, self.fetch_attempts + 1):
            try:
                result = self.mail_client.lookup(email, platform)
            except MailLookupError:
                logger.warning("mail lookup for %s errored on attempt %d", lease_code, attempt)
                raise Internal("Could not reach the mail service")

            status = str(result.get("status") or "").lower()
            if status == "success" and result.get("code"):
                logger.info("mail code for %s found on attempt %d", lease_code, attempt)
                return str(result["code"])
            if status != "not_found":
                logger.warning("mail lookup for %s returned status %r", lease_code, status)
                raise Internal("The mail service could not provide a code")
            if attempt < self.fetch_attempts:
                self.sleep(attempt * 1.0)

        raise NotFound("No code has arrived yet, try again in a moment")

    # ----------------------------------------------------------------
    # Administrative
    # ----------------------------------------------------------------

    @_store_failures_are_internal
    def hide(self, code: str) -> None:
        key = key_for(TRANSACTIONS, normalize_code(code))
        if not self.store.exists(key):
            raise NotFound()
        self.store.patch(key, {"hidden": True})
        logger.info("lease %s hidden", code)
