"""Tests for records, keys and status."""

import pytest

from rostersync.models import (
    ChangeEntry,
    Employee,
    EphemeralKey,
    InvalidTransitionError,
    KeyFormatError,
    Operation,
    RecordStatus,
    StableKey,
    parse_key,
)


class TestRecordStatus:
    """Tests for the status enum."""

    def test_parse_known_values(self):
        assert RecordStatus.parse("Active") is RecordStatus.ACTIVE
        assert RecordStatus.parse("deleted") is RecordStatus.DELETED
        assert RecordStatus.parse(" DELETED ") is RecordStatus.DELETED

    def test_parse_unknown_reads_as_active(self):
        assert RecordStatus.parse("Suspended") is RecordStatus.ACTIVE
        assert RecordStatus.parse(None) is RecordStatus.ACTIVE
        assert RecordStatus.parse("") is RecordStatus.ACTIVE

    def test_deleted_is_terminal(self):
        assert RecordStatus.ACTIVE.can_transition(RecordStatus.DELETED)
        assert RecordStatus.DELETED.can_transition(RecordStatus.DELETED)
        assert not RecordStatus.DELETED.can_transition(RecordStatus.ACTIVE)

    def test_transition_out_of_deleted_raises(self):
        record = Employee(employee_id=3, status=RecordStatus.DELETED)

        with pytest.raises(InvalidTransitionError):
            record.transition(RecordStatus.ACTIVE)

    def test_transition_returns_copy(self):
        record = Employee(employee_id=3, first_name="Ada")

        deleted = record.transition(RecordStatus.DELETED)

        assert deleted.is_deleted
        assert not record.is_deleted
        assert deleted.first_name == "Ada"


class TestEmployee:
    """Tests for the Employee dataclass."""

    def test_to_dict_uses_wire_names(self):
        record = Employee(employee_id=5, first_name="Ada", last_name="Lovelace")

        data = record.to_dict()

        assert data["EmployeeID"] == 5
        assert data["FirstName"] == "Ada"
        assert data["LastName"] == "Lovelace"
        assert data["Status"] == "Active"
        assert data["Email"] == ""

    def test_from_dict_normalizes(self):
        record = Employee.from_dict({
            "EmployeeID": "12",
            "FirstName": "Grace",
            "LastName": None,
            "HireDate": "2021-03-04T00:00:00.000Z",
            "BirthDate": "not a date",
            "Status": "weird",
        })

        assert record.employee_id == 12
        assert record.first_name == "Grace"
        assert record.last_name == ""
        assert record.hire_date == "2021-03-04"
        assert record.birth_date == ""
        assert record.status is RecordStatus.ACTIVE

    def test_from_dict_bad_id_becomes_zero(self):
        record = Employee.from_dict({"EmployeeID": "abc"})

        assert record.employee_id == 0
        assert not record.has_stable_id

    def test_negative_id_is_not_stable(self):
        assert not Employee(employee_id=-1700000000000).has_stable_id
        assert Employee(employee_id=1).has_stable_id


class TestKeys:
    """Tests for stable and ephemeral document keys."""

    def test_stable_key_string_form(self):
        assert str(StableKey(42)) == "42"

    @pytest.mark.parametrize("bad_id", [0, -3])
    def test_stable_key_rejects_non_positive(self, bad_id):
        with pytest.raises(KeyFormatError):
            StableKey(bad_id)

    def test_ephemeral_key_for_record(self):
        key = EphemeralKey.for_record(Employee(first_name="John", last_name="Doe"), 1000)

        assert str(key) == "new-John-Doe-1000"

    def test_parse_stable(self):
        assert parse_key("42") == StableKey(42)

    def test_parse_ephemeral(self):
        key = parse_key("new-John-Doe-1000")

        assert isinstance(key, EphemeralKey)
        assert key.label == "John-Doe"
        assert key.created_at == 1000

    def test_parse_legacy_prefix(self):
        key = parse_key("temp-1234")

        assert isinstance(key, EphemeralKey)
        assert key.prefix == "temp"

    def test_parse_round_trips_string_form(self):
        assert str(parse_key("new-Mary-Ann-Smith-99")) == "new-Mary-Ann-Smith-99"

    @pytest.mark.parametrize("raw", ["0", "-5", "abc", "", "12a"])
    def test_parse_rejects_unknown_shapes(self, raw):
        with pytest.raises(KeyFormatError):
            parse_key(raw)


class TestChangeEntry:
    def test_to_dict(self):
        entry = ChangeEntry(
            id=1,
            employee=Employee(employee_id=5, first_name="Ada"),
            operation=Operation.UPDATE,
            timestamp=1000,
        )

        data = entry.to_dict()

        assert data["operation"] == "update"
        assert data["employee"]["EmployeeID"] == 5
        assert data["synced"] is False
