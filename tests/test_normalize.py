from datetime import date, datetime, timedelta, timezone

from orderboard.models import PLACEHOLDER, Stage, Technology
from orderboard.normalize import normalize_invite, normalize_order, normalize_snapshot, resolve_date


CANONICAL_KEYS = {
    "id", "orderNumber", "clientName", "currentStage", "isCompleted", "isUrgent",
    "printType", "deliveryDate", "notes", "createdAt",
}


class _FirestoreLikeTimestamp:
    def __init__(self, dt):
        self._dt = dt

    def to_datetime(self):
        return self._dt


class _SecondsOnly:
    def __init__(self, seconds):
        self.seconds = seconds


def test_legacy_only_record_is_fully_populated() -> None:
    raw = {
        "jobId": "J-77",
        "customer": "ACME",
        "jobName": "Katalog",
        "trackingStage": "print",
        "technology": "OFFSET",
        "deliveryDate": "2024-06-01",
    }

    order = normalize_order("doc-1", raw)

    assert order.id == "doc-1"
    assert order.order_number == "J-77"
    assert order.client_name == "ACME / Katalog"
    assert order.current_stage is Stage.PRINT
    assert order.is_completed is False
    assert order.print_type == (Technology.OFFSET,)
    assert order.delivery_date == "2024-06-01"

    wire = order.to_wire()
    assert set(wire) == CANONICAL_KEYS
    assert wire["printType"] == ["offset"]
    assert "jobId" not in wire and "customer" not in wire
    assert "ACME" in order.search_aliases


def test_canonical_fields_win_over_legacy() -> None:
    order = normalize_order("x", {
        "orderNumber": "2024/5", "jobId": "OLD",
        "currentStage": "bookbinding", "trackingStage": "studio",
        "printType": ["digital", "DIGITAL", "offset", "laser"], "technology": "offset",
    })

    assert order.order_number == "2024/5"
    assert order.current_stage is Stage.BOOKBINDING
    assert order.print_type == (Technology.DIGITAL, Technology.OFFSET)


def test_missing_and_malformed_values_fall_back_to_safe_defaults() -> None:
    order = normalize_order("empty", {"currentStage": "shipping", "isUrgent": "nope", "notes": None, "printType": 42})

    assert order.order_number == PLACEHOLDER
    assert order.client_name == PLACEHOLDER
    assert order.current_stage is Stage.STUDIO
    assert order.is_urgent is False
    assert order.print_type == ()
    assert order.notes == ""
    assert order.delivery_date == ""

    assert normalize_order("none", None).order_number == PLACEHOLDER


def test_enum_members_in_a_record_are_read_by_value() -> None:
    order = normalize_order("e", {"currentStage": Stage.PRINT, "printType": [Technology.OFFSET, "digital"]})

    assert order.current_stage is Stage.PRINT
    assert order.print_type == (Technology.DIGITAL, Technology.OFFSET)


def test_completed_flag_always_follows_stage() -> None:
    assert normalize_order("a", {"currentStage": "completed", "isCompleted": False}).is_completed is True
    assert normalize_order("b", {"currentStage": "print", "isCompleted": True}).is_completed is False


def test_resolve_date_variants() -> None:
    assert resolve_date("2024-05-01T10:00:00Z") == "2024-05-01"
    assert resolve_date("2024-05-01") == "2024-05-01"
    assert resolve_date(date(2024, 2, 29)) == "2024-02-29"

    late_evening = datetime(2024, 5, 1, 23, 30, tzinfo=timezone(timedelta(hours=-2)))
    assert resolve_date(late_evening) == "2024-05-02"

    assert resolve_date(_FirestoreLikeTimestamp(datetime(2024, 7, 4, 8, 0, tzinfo=timezone.utc))) == "2024-07-04"
    assert resolve_date(_SecondsOnly(86400)) == "1970-01-02"
    assert resolve_date({"_seconds": 0}) == "1970-01-01"
    assert resolve_date({"seconds": "1717200000"}) == "2024-06-01"


def test_resolve_date_unusable_values_give_empty_string() -> None:
    assert resolve_date(None) == ""
    assert resolve_date("") == ""
    assert resolve_date(12.5) == ""
    assert resolve_date({"seconds": "soon"}) == ""
    assert resolve_date(object()) == ""


class _ExplodingRecord(dict):
    def get(self, key, default=None):
        raise RuntimeError("corrupt record")


def test_snapshot_skips_records_that_cannot_be_read() -> None:
    orders = normalize_snapshot([
        ("ok", {"orderNumber": "1", "clientName": "A"}),
        ("bad", _ExplodingRecord(orderNumber="2")),
        ("also-ok", {"jobId": "3"}),
    ])

    assert [o.id for o in orders] == ["ok", "also-ok"]


def test_created_at_is_kept_as_a_plain_value() -> None:
    stamp = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    order = normalize_order("t", {"createdAt": _FirestoreLikeTimestamp(stamp)})

    assert order.created_at == stamp
    assert order.to_wire()["createdAt"].startswith("2024-01-02T03:04:05")


def test_invite_normalization() -> None:
    fresh = normalize_invite("ABCD1234", {"code": "ABCD1234"})
    used = normalize_invite("WXYZ9876", {"consumedAt": "2024-01-01T00:00:00Z", "consumedBy": "a@b.cz"})

    assert fresh.id == "ABCD1234"
    assert fresh.is_consumed is False
    assert used.is_consumed is True
    assert used.consumed_by == "a@b.cz"
