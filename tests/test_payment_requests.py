from decimal import Decimal

import pytest

from conftest import ALICE_ID, BOBBY_ID, CAROL_ID
from paybot.errors import AccountNotFound, RecipientNotFound, RequestNotFound, SelfPaymentError
from paybot.payment_requests import DECLINED, EXPIRED, FULFILLED, PENDING


def _statuses(profiles, request_id):
    sent = profiles.get_by_platform_id(ALICE_ID).metadata["payment_requests_sent"]
    received = profiles.get_by_platform_id(BOBBY_ID).metadata["payment_requests_received"]
    return (
        next(entry["status"] for entry in sent if entry["id"] == request_id),
        next(entry["status"] for entry in received if entry["id"] == request_id),
    )


def test_create_persists_in_both_profiles(users, requests, profiles, clock):
    request = requests.create(ALICE_ID, BOBBY_ID, "5", reason="lunch")

    assert request.status == PENDING
    assert request.amount == Decimal("5")
    assert request.expires_at == clock.now + 24 * 60 * 60
    assert _statuses(profiles, request.request_id) == (PENDING, PENDING)


def test_create_requires_both_accounts(users, requests, register):
    with pytest.raises(RecipientNotFound):
        requests.create(ALICE_ID, 4242, "5")
    with pytest.raises(AccountNotFound):
        requests.create(4242, ALICE_ID, "5")
    with pytest.raises(SelfPaymentError):
        requests.create(ALICE_ID, ALICE_ID, "5")


def test_decline_is_terminal(users, requests, profiles):
    request = requests.create(ALICE_ID, BOBBY_ID, "5")

    declined = requests.decline(request.request_id, BOBBY_ID)

    assert declined.status == DECLINED
    assert _statuses(profiles, request.request_id) == (DECLINED, DECLINED)
    with pytest.raises(RequestNotFound):
        requests.accept(request.request_id, BOBBY_ID)
    with pytest.raises(RequestNotFound):
        requests.mark_fulfilled(request.request_id, BOBBY_ID, "0xabc")


def test_only_the_payer_can_act(users, requests):
    request = requests.create(ALICE_ID, BOBBY_ID, "5")

    with pytest.raises(RequestNotFound):
        requests.decline(request.request_id, CAROL_ID)
    with pytest.raises(RequestNotFound):
        requests.accept(request.request_id, ALICE_ID)


def test_accept_leaves_request_pending_until_paid(users, requests, profiles):
    request = requests.create(ALICE_ID, BOBBY_ID, "5")

    accepted = requests.accept(request.request_id, BOBBY_ID)
    assert accepted.status == PENDING

    fulfilled = requests.mark_fulfilled(request.request_id, BOBBY_ID, "0xfeed")
    assert fulfilled.status == FULFILLED
    assert fulfilled.tx_hash == "0xfeed"
    assert _statuses(profiles, request.request_id) == (FULFILLED, FULFILLED)


def test_stale_requests_expire(users, requests, profiles, clock):
    request = requests.create(ALICE_ID, BOBBY_ID, "5")
    clock.advance(24 * 60 * 60 + 1)

    with pytest.raises(RequestNotFound):
        requests.accept(request.request_id, BOBBY_ID)
    assert _statuses(profiles, request.request_id) == (EXPIRED, EXPIRED)


def test_sweep_expires_pending_only(users, requests, profiles, clock):
    stale = requests.create(ALICE_ID, BOBBY_ID, "5")
    done = requests.create(ALICE_ID, BOBBY_ID, "6")
    requests.decline(done.request_id, BOBBY_ID)
    clock.advance(24 * 60 * 60)

    expired = requests.sweep()

    assert [request.request_id for request in expired] == [stale.request_id]
    assert _statuses(profiles, done.request_id) == (DECLINED, DECLINED)
    assert requests.sweep() == []


def test_pending_for(users, requests):
    outgoing = requests.create(ALICE_ID, BOBBY_ID, "5")
    incoming = requests.create(CAROL_ID, ALICE_ID, "7")

    sent, received = requests.pending_for(ALICE_ID)

    assert [r.request_id for r in sent] == [outgoing.request_id]
    assert [r.request_id for r in received] == [incoming.request_id]
