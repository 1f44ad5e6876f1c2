import asyncio

import pytest

from orderboard.auth_gate import (
    ALLOWED_TRANSITIONS,
    MSG_NOT_CONFIGURED,
    AuthGate,
    GateState,
    GateView,
    InvalidTransition,
    can_transition,
)
from orderboard.identity import (
    INVALID_EMAIL,
    UNKNOWN,
    USER_NOT_FOUND,
    WEAK_PASSWORD,
    WRONG_PASSWORD,
    AuthError,
    IdentityUnavailable,
    MemoryIdentity,
)


class UnreachableIdentity(MemoryIdentity):
    async def verify(self, id_token):
        raise IdentityUnavailable("Firebase Auth nedostupný")


class CrashingIdentity(MemoryIdentity):
    async def sign_in(self, email, password):
        raise ConnectionError("reset by peer")


def _gate(invites=None, identity=None):
    gate = AuthGate(identity or MemoryIdentity(), invites)
    states = []
    gate.subscribe(lambda g: states.append(g.state))
    return gate, states


def test_transition_table() -> None:
    assert can_transition(GateState.LOADING, GateState.AUTHENTICATED)
    assert can_transition(GateState.AUTHENTICATED, GateState.UNAUTHENTICATED)
    assert not can_transition(GateState.ERROR, GateState.UNAUTHENTICATED)
    assert not can_transition(GateState.UNAUTHENTICATED, GateState.LOADING)
    assert ALLOWED_TRANSITIONS[GateState.ERROR] == set()


def test_start_without_token_is_unauthenticated() -> None:
    gate, states = _gate()

    assert asyncio.run(gate.start()) is GateState.UNAUTHENTICATED
    assert states == [GateState.UNAUTHENTICATED]
    assert gate.describe() == {"state": "unauthenticated", "view": None, "user": None, "error": None}


def test_start_without_backend_is_a_terminal_error() -> None:
    gate = AuthGate(None)

    assert asyncio.run(gate.start()) is GateState.ERROR
    assert gate.error == MSG_NOT_CONFIGURED
    with pytest.raises(InvalidTransition):
        asyncio.run(gate.sign_in("a@b.cz", "heslo123"))


def test_unreachable_identity_backend_is_an_error() -> None:
    gate, _ = _gate(identity=UnreachableIdentity())

    asyncio.run(gate.start("some-token"))
    assert gate.state is GateState.ERROR
    assert gate.error == "Firebase Auth nedostupný"


def test_register_sign_out_and_sign_in_again(invites) -> None:
    identity = MemoryIdentity()
    gate, states = _gate(invites, identity)
    asyncio.run(gate.start())

    session = asyncio.run(gate.register("jana@tiskarna.cz", "heslo123", "ABCD1234"))
    assert gate.state is GateState.AUTHENTICATED
    assert gate.describe()["user"] == "jana@tiskarna.cz"

    asyncio.run(gate.sign_out())
    assert gate.state is GateState.UNAUTHENTICATED
    assert gate.session is None
    assert asyncio.run(identity.verify(session.id_token)) is None

    asyncio.run(gate.sign_in("jana@tiskarna.cz", "heslo123"))
    assert states == [
        GateState.UNAUTHENTICATED,
        GateState.AUTHENTICATED,
        GateState.UNAUTHENTICATED,
        GateState.AUTHENTICATED,
    ]


def test_existing_token_resumes_the_session(invites) -> None:
    identity = MemoryIdentity()
    session = asyncio.run(identity.create_account("petr@tiskarna.cz", "heslo123"))
    gate, _ = _gate(invites, identity)

    asyncio.run(gate.start(session.id_token))
    assert gate.state is GateState.AUTHENTICATED
    assert gate.session.uid == session.uid


@pytest.mark.parametrize("email,password,code", [
    ("not-an-email", "heslo123", INVALID_EMAIL),
    ("nikdo@tiskarna.cz", "heslo123", USER_NOT_FOUND),
    ("jana@tiskarna.cz", "spatne-heslo", WRONG_PASSWORD),
])
def test_sign_in_errors_are_classified(email, password, code) -> None:
    identity = MemoryIdentity()
    asyncio.run(identity.create_account("jana@tiskarna.cz", "heslo123"))
    gate, _ = _gate(identity=identity)
    asyncio.run(gate.start())

    with pytest.raises(AuthError) as err:
        asyncio.run(gate.sign_in(email, password))
    assert err.value.code == code
    assert err.value.message
    assert gate.state is GateState.UNAUTHENTICATED


def test_weak_password_on_registration(invites) -> None:
    gate, _ = _gate(invites)
    asyncio.run(gate.start())

    with pytest.raises(AuthError) as err:
        asyncio.run(gate.register("jana@tiskarna.cz", "123", "ABCD1234"))
    assert err.value.code == WEAK_PASSWORD
    assert err.value.message == "Heslo musí mít alespoň 6 znaků."


def test_unexpected_failures_become_unknown_errors() -> None:
    gate, _ = _gate(identity=CrashingIdentity())
    asyncio.run(gate.start())

    with pytest.raises(AuthError) as err:
        asyncio.run(gate.sign_in("a@b.cz", "heslo123"))
    assert err.value.code == UNKNOWN


def test_view_toggle_requires_authentication(invites) -> None:
    gate, _ = _gate(invites)
    asyncio.run(gate.start())
    with pytest.raises(InvalidTransition):
        gate.show_invites()

    asyncio.run(gate.register("jana@tiskarna.cz", "heslo123", "ABCD1234"))
    gate.show_invites()
    assert gate.describe()["view"] == "invites"
    gate.show_board()
    assert gate.view is GateView.BOARD

    gate.show_invites()
    asyncio.run(gate.sign_out())
    assert gate.view is GateView.BOARD
