import asyncio

import pytest

from orderboard.actions import OrderActions
from orderboard.board_view import OrderBoard
from orderboard.edit_session import ConfirmationPending, ConfirmGate, EditSession, request_order_delete
from orderboard.store import MemoryCollection


class RecordingCollection(MemoryCollection):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.updates = []

    async def update(self, doc_id, data):
        self.updates.append((doc_id, dict(data)))
        await super().update(doc_id, data)


@pytest.fixture
def recording():
    return RecordingCollection("orders", {
        "o1": {"orderNumber": "2024/001", "clientName": "Alfa", "notes": "stará poznámka", "deliveryDate": "2024-05-01"},
        "o2": {"orderNumber": "2024/002", "clientName": "Beta"},
    })


def _session(collection):
    board = OrderBoard(collection)
    board.mount()
    slots = []
    editor = EditSession(OrderActions(collection, board.get), on_change=slots.append)
    return board, editor, slots


def test_commit_sends_only_the_edited_field(recording) -> None:
    board, editor, _ = _session(recording)

    editor.begin("o1", "clientName", "Alfa")
    editor.set_value("  Alfa Print  ")
    assert asyncio.run(editor.commit("o1", "clientName")) is True

    assert recording.updates == [("o1", {"clientName": "Alfa Print"})]
    assert board.get("o1").client_name == "Alfa Print"
    assert editor.slot is None


def test_blank_value_is_rejected_and_slot_closes(recording) -> None:
    _, editor, _ = _session(recording)

    editor.begin("o1", "orderNumber", "2024/001")
    editor.set_value("   ")
    assert asyncio.run(editor.commit()) is False

    assert recording.updates == []
    assert editor.slot is None


def test_notes_may_be_cleared(recording) -> None:
    board, editor, _ = _session(recording)

    editor.begin("o1", "notes", "stará poznámka")
    editor.set_value("")
    assert asyncio.run(editor.commit()) is True

    assert recording.updates == [("o1", {"notes": ""})]
    assert board.get("o1").notes == ""


def test_invalid_delivery_date_is_not_saved(recording) -> None:
    _, editor, _ = _session(recording)

    editor.begin("o1", "deliveryDate", "2024-05-01")
    editor.set_value("zítra")
    assert asyncio.run(editor.commit()) is False
    assert recording.updates == []


def test_new_edit_discards_the_previous_one(recording) -> None:
    _, editor, slots = _session(recording)

    editor.begin("o1", "clientName", "Alfa")
    editor.set_value("Neuloženo")
    editor.begin("o2", "notes", "")

    assert editor.is_editing("o2", "notes")
    assert not editor.is_editing("o1", "clientName")
    assert asyncio.run(editor.commit("o1", "clientName")) is False
    assert recording.updates == []
    assert [s.order_id if s else None for s in slots] == ["o1", "o2"]


def test_cancel_and_escape_discard_without_writing(recording) -> None:
    _, editor, _ = _session(recording)

    editor.begin("o1", "clientName", "Alfa")
    editor.set_value("X")
    editor.cancel()
    assert editor.slot is None

    editor.begin("o1", "clientName", "Alfa")
    editor.set_value("Y")
    assert asyncio.run(editor.handle_key("Escape")) is False
    assert editor.slot is None
    assert recording.updates == []


def test_enter_and_blur_commit(recording) -> None:
    _, editor, _ = _session(recording)

    editor.begin("o1", "clientName", "Alfa")
    editor.set_value("Enter s.r.o.")
    assert asyncio.run(editor.handle_key("Enter")) is True

    editor.begin("o2", "orderNumber", "2024/002")
    editor.set_value("2024/202")
    assert asyncio.run(editor.blur()) is True

    assert recording.updates == [("o1", {"clientName": "Enter s.r.o."}), ("o2", {"orderNumber": "2024/202"})]


def test_only_known_fields_are_editable(recording) -> None:
    _, editor, _ = _session(recording)

    with pytest.raises(ValueError):
        editor.begin("o1", "currentStage", "studio")
    assert editor.slot is None


def test_update_failure_is_swallowed_after_logging(recording) -> None:
    _, editor, _ = _session(recording)

    editor.begin("gone", "clientName", "")
    editor.set_value("Někdo")
    assert asyncio.run(editor.commit()) is False
    assert editor.slot is None


# -------------------------
# Confirmation
# -------------------------
def test_delete_runs_only_after_confirmation(recording) -> None:
    board, editor, _ = _session(recording)
    shown = []
    gate = ConfirmGate(on_change=shown.append)

    request = request_order_delete(gate, editor.actions, "o1", "2024/001")
    assert request.message == "Opravdu chcete zakázku 2024/001 smazat? Tato akce je nevratná."
    assert board.get("o1") is not None

    assert asyncio.run(gate.confirm()) is True
    assert board.get("o1") is None
    assert gate.pending is None
    assert shown == [request, None]


def test_dismissed_confirmation_does_nothing(recording) -> None:
    board, editor, _ = _session(recording)
    gate = ConfirmGate()

    request_order_delete(gate, editor.actions, "o1", "2024/001")
    assert asyncio.run(gate.cancel()) is True
    assert asyncio.run(gate.confirm()) is False
    assert board.get("o1") is not None


def test_only_one_confirmation_at_a_time(recording) -> None:
    _, editor, _ = _session(recording)
    gate = ConfirmGate()

    request_order_delete(gate, editor.actions, "o1", "2024/001")
    with pytest.raises(ConfirmationPending):
        request_order_delete(gate, editor.actions, "o2", "2024/002")

    calls = []
    asyncio.run(gate.cancel())
    gate.request("Sync?", lambda: calls.append("yes"))
    asyncio.run(gate.confirm())
    assert calls == ["yes"]
