import asyncio

import pytest

from orderboard.edit_session import ConfirmGate
from orderboard.identity import EMAIL_IN_USE, INVALID_INVITE, UNKNOWN, AuthError, MemoryIdentity
from orderboard.invites import (
    INVITE_ALPHABET,
    MSG_GENERATE_FAILED,
    MSG_LOAD_FAILED,
    MSG_REVOKE_FAILED,
    InviteSession,
    create_invite,
    generate_invite_code,
    register_with_invite,
)
from orderboard.store import MemoryCollection, StoreError


class BrokenWrites(MemoryCollection):
    async def create(self, doc_id, data):
        raise StoreError("denied")

    async def delete(self, doc_id):
        raise StoreError("denied")


class BrokenTransactions(MemoryCollection):
    async def transact(self, doc_id, fn):
        raise StoreError("unavailable")


def test_generated_codes_use_the_invite_alphabet() -> None:
    codes = {generate_invite_code() for _ in range(50)}

    assert all(len(c) == 8 and set(c) <= set(INVITE_ALPHABET) for c in codes)
    assert len(codes) > 1
    assert len(generate_invite_code(12)) == 12


def test_generate_list_and_revoke(invites) -> None:
    gate = ConfirmGate()
    session = InviteSession(invites, gate)
    session.mount()
    assert [i.id for i in session.invites] == ["ABCD1234"]

    code = asyncio.run(session.generate())
    assert code is not None
    assert sorted(i.id for i in session.invites) == sorted(["ABCD1234", code])
    assert asyncio.run(invites.get(code))["code"] == code

    request = session.request_revoke("ABCD1234")
    assert "ABCD1234" in request.message
    assert [i.id for i in session.invites if i.id == "ABCD1234"]
    asyncio.run(gate.confirm())
    assert [i.id for i in session.invites] == [code]

    session.unmount()
    assert invites.subscriber_count == 0


def test_write_failures_surface_as_messages() -> None:
    notices = []
    session = InviteSession(BrokenWrites("invites", {"OLDCODE1": {}}), ConfirmGate(), notify=notices.append)
    session.mount()

    assert asyncio.run(session.generate()) is None
    assert session.error == MSG_GENERATE_FAILED
    assert session.busy is False

    assert asyncio.run(session.revoke("OLDCODE1")) is False
    assert notices == [MSG_REVOKE_FAILED]


def test_generate_never_overwrites_an_existing_invite(monkeypatch) -> None:
    invites = MemoryCollection("invites", {"TAKEN001": {"code": "TAKEN001", "consumedBy": "eva@tiskarna.cz"}})
    drawn = iter(["TAKEN001", "FRESH002"])
    monkeypatch.setattr("orderboard.invites.generate_invite_code", lambda length=8: next(drawn))

    code = asyncio.run(create_invite(invites))

    assert code == "FRESH002"
    assert asyncio.run(invites.get("TAKEN001")) == {"code": "TAKEN001", "consumedBy": "eva@tiskarna.cz"}
    assert asyncio.run(invites.get("FRESH002"))["code"] == "FRESH002"


def test_generate_gives_up_after_repeated_collisions(monkeypatch) -> None:
    invites = MemoryCollection("invites", {"TAKEN001": {"code": "TAKEN001"}})
    monkeypatch.setattr("orderboard.invites.generate_invite_code", lambda length=8: "TAKEN001")
    session = InviteSession(invites, ConfirmGate())

    assert asyncio.run(session.generate()) is None
    assert session.error == MSG_GENERATE_FAILED
    assert [d.id for d in invites.snapshot()] == ["TAKEN001"]


def test_list_subscription_failure(invites) -> None:
    session = InviteSession(invites, ConfirmGate())
    session.mount()

    invites.fail_subscribers(RuntimeError("permission denied"))
    assert session.error == MSG_LOAD_FAILED


# -------------------------
# Registration
# -------------------------
def test_registration_consumes_the_invite(invites) -> None:
    identity = MemoryIdentity()

    session = asyncio.run(register_with_invite(identity, invites, "nova@tiskarna.cz", "heslo123", " ABCD1234 "))

    assert session.email == "nova@tiskarna.cz"
    assert asyncio.run(invites.get("ABCD1234")) is None
    assert asyncio.run(identity.verify(session.id_token)).uid == session.uid


def test_invite_cannot_be_used_twice(invites) -> None:
    identity = MemoryIdentity()
    asyncio.run(register_with_invite(identity, invites, "a@tiskarna.cz", "heslo123", "ABCD1234"))

    with pytest.raises(AuthError) as err:
        asyncio.run(register_with_invite(identity, invites, "b@tiskarna.cz", "heslo123", "ABCD1234"))
    assert err.value.code == INVALID_INVITE


@pytest.mark.parametrize("code", ["", "   ", "NEEXISTUJE"])
def test_missing_or_unknown_code_is_rejected(invites, code) -> None:
    with pytest.raises(AuthError) as err:
        asyncio.run(register_with_invite(MemoryIdentity(), invites, "a@tiskarna.cz", "heslo123", code))
    assert err.value.code == INVALID_INVITE


def test_failed_account_creation_releases_the_invite(invites) -> None:
    identity = MemoryIdentity()
    asyncio.run(identity.create_account("taken@tiskarna.cz", "heslo123"))

    with pytest.raises(AuthError) as err:
        asyncio.run(register_with_invite(identity, invites, "taken@tiskarna.cz", "heslo123", "ABCD1234"))
    assert err.value.code == EMAIL_IN_USE

    record = asyncio.run(invites.get("ABCD1234"))
    assert record is not None and not record.get("consumedAt")
    assert asyncio.run(register_with_invite(identity, invites, "free@tiskarna.cz", "heslo123", "ABCD1234"))


def test_claimed_invite_stays_unusable_when_delete_fails() -> None:
    invites = BrokenWrites("invites", {"ABCD1234": {"code": "ABCD1234"}})
    identity = MemoryIdentity()

    asyncio.run(register_with_invite(identity, invites, "a@tiskarna.cz", "heslo123", "ABCD1234"))

    record = asyncio.run(invites.get("ABCD1234"))
    assert record["consumedBy"] == "a@tiskarna.cz"
    with pytest.raises(AuthError) as err:
        asyncio.run(register_with_invite(identity, invites, "b@tiskarna.cz", "heslo123", "ABCD1234"))
    assert err.value.code == INVALID_INVITE


def test_store_outage_during_lookup_is_unknown_error() -> None:
    invites = BrokenTransactions("invites", {"ABCD1234": {}})

    with pytest.raises(AuthError) as err:
        asyncio.run(register_with_invite(MemoryIdentity(), invites, "a@tiskarna.cz", "heslo123", "ABCD1234"))
    assert err.value.code == UNKNOWN
