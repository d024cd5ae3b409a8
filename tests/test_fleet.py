#!/usr/bin/env python3
"""Tests for fleet CLI formatting, table helpers and commands."""

import pytest

from fleet import (
    format_days_remaining,
    format_km,
    format_time,
    main,
    make_assignment_table,
    make_calendar_table,
    make_document_table,
    make_service_table,
    make_vehicle_table,
    truncate,
)
from models import (
    Assignment,
    AssignmentStatus,
    Document,
    DocumentStatus,
    ServiceRecord,
    ServiceStatus,
    Vehicle,
    VehicleStatus,
    as_utc,
    load_fleet,
)
from scheduling import CalendarEvent, DocumentView, ServiceView

FLEET_YAML = """
vehicles:
  - id: V1
    plateNumber: 12-D-1234
    model: Toyota Corolla
    odometerKm: 42000
  - id: V2
    plateNumber: 19-G-5678
    model: Ford Transit
    odometerKm: 15500
drivers:
  - id: D1
    name: Aoife Byrne
  - id: D2
    name: Tomas Walsh
documents:
  - id: INS
    owner: {type: vehicle, id: V1}
    type: insurance
    issueDate: 2023-01-11
    expiryDate: 2024-01-11
serviceRecords:
  - id: S1
    vehicleId: V2
    lastServiceKm: 10000
    currentKm: 15000
    nextServiceKm: 16000
    serviceDate: 2023-09-01
"""

NOW = ["--now", "2024-01-01T00:00:00Z"]


@pytest.fixture
def fleet_file(tmp_path):
    path = tmp_path / "fleet.yaml"
    path.write_text(FLEET_YAML)
    return path


# =============================================================================
# Formatting helpers
# =============================================================================


class TestFormatKm:
    """Tests for format_km."""

    def test_formats_number(self):
        assert format_km(42000) == "42,000"
        assert format_km(0) == "0"

    def test_negative(self):
        assert format_km(-500) == "-500"

    def test_none_returns_dash(self):
        assert format_km(None) == "-"


class TestFormatTime:

    def test_formats_timestamp(self):
        assert format_time(as_utc("2024-01-05T09:30:00Z")) == "2024-01-05 09:30"

    def test_none_returns_dash(self):
        assert format_time(None) == "-"


class TestFormatDaysRemaining:
    """Tests for format_days_remaining."""

    def test_none_returns_dash(self):
        assert format_days_remaining(None) == "-"

    def test_days_only(self):
        assert format_days_remaining(14) == "14d"

    def test_months_and_days(self):
        assert format_days_remaining(105) == "3mo 15d"

    def test_negative(self):
        assert format_days_remaining(-65) == "-2mo 5d"
        assert format_days_remaining(-1) == "-1d"


class TestTruncate:
    """Tests for truncate."""

    def test_short_text_unchanged(self):
        assert truncate("short") == "short"

    def test_long_text_truncated(self):
        result = truncate("a" * 40, max_len=30)
        assert len(result) == 30
        assert result.endswith("...")

    def test_empty_returns_dash(self):
        assert truncate("") == "-"
        assert truncate(None) == "-"


# =============================================================================
# Table builders
# =============================================================================


class TestTables:
    """Tests for the table builders."""

    def test_vehicle_table(self):
        vehicle = Vehicle("V1", "12-D-1234", "Corolla", odometer_km=42000, status=VehicleStatus.ASSIGNED)
        assignment = Assignment("A1", "V1", "D1", "2024-01-01T00:00Z", "2024-01-05T00:00Z")
        rows = make_vehicle_table([vehicle], {"V1": assignment})
        assert rows == [["V1", "12-D-1234", "Corolla", "42,000", "assigned", "D1", "2024-01-05 00:00"]]

    def test_vehicle_table_without_assignment(self):
        vehicle = Vehicle("V2", "19-G-5678", "Transit")
        rows = make_vehicle_table([vehicle], {})
        assert rows[0][-2:] == ["-", "-"]

    def test_assignment_table(self):
        assignment = Assignment(
            "A1", "V1", "D1", "2024-01-01T00:00Z", "2024-01-05T00:00Z",
            status=AssignmentStatus.CANCELLED,
        )
        rows = make_assignment_table([assignment])
        assert rows == [["A1", "V1", "D1", "2024-01-01 00:00", "2024-01-05 00:00", "cancelled", "-"]]

    def test_document_table(self):
        doc = Document("INS", "vehicle", "V1", "insurance", "2023-01-11", "2024-01-11")
        rows = make_document_table([DocumentView(doc, DocumentStatus.EXPIRING_SOON, 10)])
        assert rows == [["INS", "vehicle:V1", "Insurance", "2024-01-11", "10d"]]

    def test_service_table(self):
        record = ServiceRecord("S1", "V2", 10000, 15000, 16000, "2023-09-01")
        rows = make_service_table([ServiceView(record, ServiceStatus.DUE_SOON, 15500, 500)])
        assert rows == [["S1", "V2", "2023-09-01", "10,000", "15,500", "16,000", "500"]]

    def test_calendar_table(self):
        event = CalendarEvent(
            "B1", "block", "V1", None, as_utc("2024-02-01"), as_utc("2024-02-03"), "NCT"
        )
        rows = make_calendar_table([event])
        assert rows == [["2024-02-01 00:00", "2024-02-03 00:00", "block", "V1", "-", "NCT"]]


# =============================================================================
# Commands
# =============================================================================


class TestCommands:
    """Run the CLI end to end against a fleet file."""

    def test_missing_file(self, tmp_path, capsys):
        assert main([str(tmp_path / "nope.yaml"), "status"]) == 1
        assert "File not found" in capsys.readouterr().out

    def test_status(self, fleet_file, capsys):
        assert main([str(fleet_file), "status"]) == 0
        out = capsys.readouterr().out
        assert "Vehicles: 2" in out
        assert "12-D-1234" in out

    def test_assign_persists(self, fleet_file, capsys):
        code = main(
            [str(fleet_file), *NOW, "--actor", "dispatcher", "assign", "V1", "D1",
             "2024-01-01T00:00Z", "2024-01-05T00:00Z", "--reason", "site visit"]
        )
        assert code == 0
        assert "Assignment created" in capsys.readouterr().out

        fleet = load_fleet(fleet_file)
        assert fleet.assignments[0].assigned_by == "dispatcher"
        assert fleet.assignments[0].reason == "site visit"
        assert fleet.vehicles[0].status == VehicleStatus.ASSIGNED

    def test_conflict_is_reported(self, fleet_file, capsys):
        main([str(fleet_file), *NOW, "assign", "V1", "D1", "2024-01-01T00:00Z", "2024-01-05T00:00Z"])
        code = main([str(fleet_file), *NOW, "assign", "V1", "D2", "2024-01-03T00:00Z", "2024-01-06T00:00Z"])
        assert code == 1
        assert "Error: vehicle 'V1' is already held by assignment" in capsys.readouterr().out

    def test_complete_early(self, fleet_file):
        main([str(fleet_file), *NOW, "assign", "V1", "D1", "2024-01-01T00:00Z", "2024-01-05T00:00Z"])
        assignment_id = load_fleet(fleet_file).assignments[0].id

        assert main([str(fleet_file), *NOW, "complete", assignment_id, "--at", "2024-01-03T00:00Z"]) == 0

        fleet = load_fleet(fleet_file)
        assert fleet.assignments[0].status == AssignmentStatus.COMPLETED
        assert fleet.assignments[0].end_time == as_utc("2024-01-03T00:00Z")
        assert fleet.vehicles[0].status == VehicleStatus.AVAILABLE

    def test_cancel_unknown(self, fleet_file, capsys):
        assert main([str(fleet_file), "cancel", "nope"]) == 1
        assert "Assignment 'nope' not found" in capsys.readouterr().out

    def test_assignments_listing(self, fleet_file, capsys):
        main([str(fleet_file), *NOW, "assign", "V1", "D1", "2024-01-01T00:00Z", "2024-01-05T00:00Z"])
        capsys.readouterr()
        assert main([str(fleet_file), "assignments", "--driver", "D1"]) == 0
        assert "active" in capsys.readouterr().out

    def test_block_and_unblock(self, fleet_file, capsys):
        assert main([str(fleet_file), *NOW, "block", "V2", "2024-01-01", "2024-01-03", "--reason", "NCT"]) == 0
        assert load_fleet(fleet_file).vehicles[1].status == VehicleStatus.BLOCKED

        block_id = load_fleet(fleet_file).blocks[0].id
        assert main([str(fleet_file), "--now", "2024-01-02T00:00:00Z", "unblock", block_id]) == 0

        fleet = load_fleet(fleet_file)
        assert fleet.vehicles[1].status == VehicleStatus.AVAILABLE
        assert fleet.blocks[0].end_time == as_utc("2024-01-02T00:00:00Z")

    def test_calendar(self, fleet_file, capsys):
        main([str(fleet_file), *NOW, "block", "V2", "2024-01-10", "2024-01-12", "--reason", "NCT"])
        capsys.readouterr()
        assert main([str(fleet_file), "calendar", "2024-01-01", "2024-02-01"]) == 0
        out = capsys.readouterr().out
        assert "block" in out
        assert "NCT" in out

    def test_documents(self, fleet_file, capsys):
        assert main([str(fleet_file), *NOW, "documents"]) == 0
        out = capsys.readouterr().out
        assert "EXPIRING SOON:" in out
        assert "INS" in out

    def test_service(self, fleet_file, capsys):
        assert main([str(fleet_file), "service"]) == 0
        out = capsys.readouterr().out
        assert "DUE SOON:" in out
        assert "15,500" in out

    def test_refresh(self, fleet_file, capsys):
        main([str(fleet_file), *NOW, "block", "V2", "2024-01-10", "2024-01-12"])
        capsys.readouterr()
        assert main([str(fleet_file), "--now", "2024-01-11T00:00:00Z", "refresh"]) == 0
        assert "V2: blocked" in capsys.readouterr().out

    def test_status_reflects_now(self, fleet_file, capsys):
        main([str(fleet_file), *NOW, "block", "V1", "2024-02-01", "2024-02-03", "--reason", "NCT"])
        capsys.readouterr()

        assert main([str(fleet_file), "--now", "2024-02-02T00:00:00Z", "status"]) == 0

        out = capsys.readouterr().out
        row = next(line for line in out.splitlines() if line.split()[:1] == ["V1"])
        assert "blocked" in row
        assert load_fleet(fleet_file).vehicles[0].status == VehicleStatus.BLOCKED

    def test_calendar_for_one_vehicle(self, fleet_file, capsys):
        main([str(fleet_file), *NOW, "block", "V2", "2024-01-10", "2024-01-12", "--reason", "NCT"])
        capsys.readouterr()
        assert main([str(fleet_file), "calendar", "2024-01-01", "2024-02-01", "--vehicle", "V1"]) == 0
        assert "No events in range." in capsys.readouterr().out

    def test_log_service(self, fleet_file, capsys):
        code = main([str(fleet_file), "log-service", "V1", "48000", "--date", "2024-03-01"])
        assert code == 0
        assert "Next (km): 54,000" in capsys.readouterr().out

        fleet = load_fleet(fleet_file)
        record = fleet.service_records[-1]
        assert record.vehicle_id == "V1"
        assert record.service_date.isoformat() == "2024-03-01"
        assert record.next_service_km == 54000
        assert fleet.vehicles[0].odometer_km == 48000

    def test_log_service_defaults_to_today(self, fleet_file):
        main(
            [str(fleet_file), "--now", "2024-03-05T10:00:00Z", "log-service", "V2", "16000",
             "--next-km", "20000"]
        )
        record = load_fleet(fleet_file).service_records[-1]
        assert record.service_date.isoformat() == "2024-03-05"
        assert record.next_service_km == 20000

    def test_log_service_already_due(self, fleet_file, capsys):
        assert main([str(fleet_file), "log-service", "V1", "30000"]) == 1
        assert "Error:" in capsys.readouterr().out
        assert len(load_fleet(fleet_file).service_records) == 1

    def test_update_odometer(self, fleet_file, capsys):
        assert main([str(fleet_file), "update-odometer", "V1", "43250"]) == 0
        out = capsys.readouterr().out
        assert "Previous odometer: 42,000" in out
        assert "New odometer:      43,250" in out
        assert load_fleet(fleet_file).vehicles[0].odometer_km == 43250

    def test_odometer_cannot_go_backwards(self, fleet_file, capsys):
        assert main([str(fleet_file), "update-odometer", "V1", "100"]) == 1
        assert "Error: Odometer for vehicle 'V1'" in capsys.readouterr().out

    def test_update_odometer_unknown_vehicle(self, fleet_file, capsys):
        assert main([str(fleet_file), "update-odometer", "V9", "100"]) == 1
        assert "Vehicle 'V9' not found" in capsys.readouterr().out
