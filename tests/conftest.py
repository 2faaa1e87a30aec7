"""Shared fixtures: a throwaway SQLite-backed store, a settable clock and seed helpers."""
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from config import APP_TIMEZONE
from db import init_db, make_session_factory
from store import CREDENTIALS, PROMO_CODES, SLOTS, TRANSACTIONS, Store, key_for


class FakeClock:
    def __init__(self, moment: datetime):
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, **delta) -> None:
        self.moment += timedelta(**delta)


class SleepRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class Seeder:
    def __init__(self, store: Store):
        self.store = store

    def slot(self, slot_id="premium", **data):
        doc = {"name": "Premium", "platform": "Netflix", "enabled": True, "duration": 6}
        doc.update(data)
        self.store.put(key_for(SLOTS, slot_id), doc)
        return doc

    def code(self, code="ABC123", slot_id="premium", **data):
        doc = {
            "code": code,
            "mode": "slot",
            "slot_id": slot_id,
            "slot_name": "Premium",
            "platform": "Netflix",
            "max_uses": 1,
            "used_count": 0,
            "revoked": False,
            "used_by": [],
        }
        doc.update(data)
        self.store.put(key_for(PROMO_CODES, code), doc)
        return doc

    def credential(self, cred_id="cred_1", **data):
        doc = {
            "slots": ["premium"],
            "platforms": [],
            "locked": False,
            "used": 0,
            "max_usage": 0,
            "email": f"{cred_id}@example.com",
            "password": "hunter2",
        }
        doc.update(data)
        self.store.put(key_for(CREDENTIALS, cred_id), doc)
        return doc

    def lease(self, code="ABC123", **data):
        doc = {
            "code": code,
            "user_id": "user42",
            "platform": "Netflix",
            "slot_id": "premium",
            "slot_name": "Premium",
            "label_mode": "name",
            "headline": "Premium Account",
            "start_time": "2026-10-19 10:00:00",
            "end_time": "2026-10-19 16:00:00",
            "credential_id": "cred_1",
            "last_email": "cred_1@example.com",
            "last_password": "hunter2",
            "hidden": False,
        }
        doc.update(data)
        self.store.put(key_for(TRANSACTIONS, code), doc)
        return doc


@pytest.fixture
def store(tmp_path):
    engine, factory = make_session_factory(f"sqlite:///{tmp_path / 'records.db'}")
    init_db(engine)
    yield Store(factory)
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 10, 0, 0, tzinfo=ZoneInfo(APP_TIMEZONE)))


@pytest.fixture
def seed(store):
    return Seeder(store)


@pytest.fixture
def sleeps():
    return SleepRecorder()
