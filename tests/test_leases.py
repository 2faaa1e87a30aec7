from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from clock import format_wall_clock, iso
from errors import (
    Busy,
    Expired,
    Hidden,
    Internal,
    InvalidRequest,
    NoResourceBound,
    NotFound,
    ResourceNotFound,
)
from leases import DEFAULT_FEATURES, LeaseService
from mail_client import MailLookupError
from redemption import RedemptionEngine
from store import MAIL_FETCH_LOCKS, PLATFORMS, TRANSACTIONS, key_for

RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


@pytest.fixture
def mail_client():
    return Mock()


@pytest.fixture
def leases(store, clock, sleeps, mail_client):
    return LeaseService(store, mail_client=mail_client, clock=clock, sleep=sleeps)


def test_claim_then_view_until_end_time(store, clock, seed, leases):
    seed.slot("premium", duration=6)
    seed.code("ABC123")
    seed.credential("cred_1")
    RedemptionEngine(store, clock=clock).claim("ABC123", "user42")

    clock.advance(hours=6)  # 16:00:00
    view = leases.view("abc123")
    assert view.end_time == "2026-10-19 16:00:00"
    assert view.last_email == "cred_1@example.com"

    clock.advance(seconds=1)  # 16:00:01
    with pytest.raises(Expired):
        leases.view("ABC123")


def test_view_rejects_missing_and_hidden(seed, leases):
    with pytest.raises(NotFound):
        leases.view("NOPE")

    seed.lease("ABC123", hidden=True)
    with pytest.raises(Hidden):
        leases.view("ABC123")


def test_view_features_and_invite_link(store, seed, leases):
    seed.slot("premium", features={"invite": True})
    seed.credential("cred_1", invite_link="https://example.com/join/cred")
    seed.lease("ABC123")
    store.put(key_for(PLATFORMS, "netflix"), {"features": {"mail_code": True, "totp": False}})

    view = leases.view("ABC123")

    assert view.features == {"refresh": True, "totp": False, "mail_code": True, "invite": True}
    assert view.invite_link == "https://example.com/join/cred"

    seed.lease("ABC123", invite_link="https://example.com/join/lease")
    assert leases.view("ABC123").invite_link == "https://example.com/join/lease"


def test_unassigned_lease_has_default_features_and_no_invite(seed, leases):
    seed.lease("ABC123", credential_id=None, last_email=None, last_password=None,
               platform=None, slot_id=None)
    view = leases.view("ABC123")
    assert view.features == DEFAULT_FEATURES
    assert view.invite_link is None


def test_refresh_twice_without_change_does_not_write(store, seed, leases):
    seed.credential("cred_1")
    seed.lease("ABC123")
    revision = store.get(key_for(TRANSACTIONS, "ABC123")).revision

    for _ in range(2):
        result = leases.refresh("ABC123")
        assert result.changed is False
        assert result.email == "cred_1@example.com"

    assert store.get(key_for(TRANSACTIONS, "ABC123")).revision == revision


def test_refresh_picks_up_new_login(store, seed, leases):
    seed.credential("cred_1")
    seed.lease("ABC123")
    seed.credential("cred_1", password="correct-horse")

    result = leases.refresh("ABC123")

    assert result.changed is True
    assert result.password == "correct-horse"
    assert store.get(key_for(TRANSACTIONS, "ABC123")).data["last_password"] == "correct-horse"
    assert leases.refresh("ABC123").changed is False


def test_refresh_keeps_snapshot_when_login_is_cleared(store, seed, leases):
    seed.credential("cred_1")
    seed.lease("ABC123")
    seed.credential("cred_1", email=None, password=None)

    with pytest.raises(ResourceNotFound):
        leases.refresh("ABC123")

    lease = store.get(key_for(TRANSACTIONS, "ABC123")).data
    assert lease["last_email"] == "cred_1@example.com"
    assert lease["last_password"] == "hunter2"


def test_refresh_failures(seed, leases, clock):
    seed.lease("NOBIND", credential_id=None)
    with pytest.raises(NoResourceBound):
        leases.refresh("NOBIND")

    seed.lease("GONE01", credential_id="cred_gone")
    with pytest.raises(ResourceNotFound):
        leases.refresh("GONE01")

    seed.lease("OLD001", end_time="2026-10-19 09:59:59")
    with pytest.raises(Expired):
        leases.refresh("OLD001")


def test_time_code_from_bound_credential(store, seed, clock, leases):
    clock.moment = datetime.fromtimestamp(1111111109, tz=timezone.utc)
    seed.credential("cred_1", totp_secret=RFC_SECRET)
    seed.lease("ABC123", end_time=format_wall_clock(datetime(2005, 3, 19, tzinfo=timezone.utc)))

    otp, remaining = leases.time_code("ABC123")

    assert (otp, remaining) == ("081804", 1)
    assert store.get(key_for(TRANSACTIONS, "ABC123")).data["totp_delivered"] is True


def test_time_code_requires_a_secret(seed, leases):
    seed.credential("cred_1")
    seed.lease("ABC123")
    with pytest.raises(InvalidRequest):
        leases.time_code("ABC123")

    seed.credential("cred_1", totp_secret="not base32!")
    with pytest.raises(Internal):
        leases.time_code("ABC123")


def test_mail_code_polls_until_found_and_clears_window(store, seed, leases, mail_client, sleeps):
    seed.credential("cred_1")
    seed.lease("ABC123")
    mail_client.lookup.side_effect = [
        {"status": "not_found"},
        {"status": "success", "code": "445566"},
    ]

    assert leases.fetch_mail_code("ABC123") == "445566"

    mail_client.lookup.assert_called_with("cred_1@example.com", "netflix")
    assert sleeps.calls == [1.0]
    window = store.get(key_for(MAIL_FETCH_LOCKS, "netflix")).data
    assert window["busy_until"] is None
    lease = store.get(key_for(TRANSACTIONS, "ABC123")).data
    assert lease["mail_code_delivered"] is True
    assert lease["last_mail_code"] == "445566"


def test_mail_code_busy_while_window_is_held(store, seed, clock, leases, mail_client):
    seed.credential("cred_1")
    seed.lease("ABC123")
    store.put(key_for(MAIL_FETCH_LOCKS, "netflix"),
              {"busy_until": iso(clock().replace(minute=1)), "holder": "OTHER"})

    with pytest.raises(Busy):
        leases.fetch_mail_code("ABC123")
    mail_client.lookup.assert_not_called()

    clock.advance(minutes=2)
    mail_client.lookup.return_value = {"status": "success", "code": "1234"}
    assert leases.fetch_mail_code("ABC123") == "1234"


def test_mail_code_gives_up_after_three_not_found(store, seed, leases, mail_client, sleeps):
    seed.credential("cred_1")
    seed.lease("ABC123")
    mail_client.lookup.return_value = {"status": "not_found"}

    with pytest.raises(NotFound):
        leases.fetch_mail_code("ABC123")

    assert mail_client.lookup.call_count == 3
    assert sleeps.calls == [1.0, 2.0]
    assert store.get(key_for(MAIL_FETCH_LOCKS, "netflix")).data["busy_until"] is None


@pytest.mark.parametrize(
    "behaviour",
    [{"return_value": {"status": "error"}}, {"side_effect": MailLookupError("timeout")}],
)
def test_mail_code_stops_on_error_and_releases(store, seed, leases, mail_client, behaviour):
    seed.credential("cred_1")
    seed.lease("ABC123")
    mail_client.lookup.configure_mock(**behaviour)

    with pytest.raises(Internal):
        leases.fetch_mail_code("ABC123")

    assert mail_client.lookup.call_count == 1
    assert store.get(key_for(MAIL_FETCH_LOCKS, "netflix")).data["busy_until"] is None


def test_hide_lease(store, seed, leases):
    seed.lease("ABC123")
    leases.hide("abc123")
    with pytest.raises(Hidden):
        leases.view("ABC123")
    with pytest.raises(NotFound):
        leases.hide("NOPE")
