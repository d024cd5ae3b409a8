#!/usr/bin/env python3
"""
Unified CLI for fleet scheduling and compliance.

Commands:
  status     - Show every vehicle with its current status and assignment
  assign     - Assign a vehicle to a driver for a time window
  complete   - Complete an active assignment (optionally early)
  cancel     - Cancel an active assignment
  assignments - List assignments by vehicle, driver or status
  block      - Block a vehicle for a time window
  unblock    - Complete an active block
  calendar   - List active assignments and blocks in a date range
  documents  - Show document status (expired, expiring soon, valid)
  service    - Show service status (overdue, due soon, ok)
  refresh    - Recompute every vehicle's status against the clock
  log-service - Record a completed service for a vehicle
  update-odometer - Record a new odometer reading for a vehicle
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from tabulate import tabulate
from typing import List, Optional

from models import (
    Assignment,
    AssignmentStatus,
    DocumentStatus,
    FleetError,
    NotFoundError,
    ServiceStatus,
)
from scheduling import (
    AssignmentScheduler,
    CalendarEvent,
    DocumentView,
    FixedClock,
    FleetStatusReader,
    LoggingSink,
    ServiceView,
    SystemClock,
    YamlRepository,
    retry_transient,
)

# =============================================================================
# Formatting helpers
# =============================================================================


def format_km(km: Optional[float]) -> str:
    """Format kilometres for display."""
    return f"{km:,.0f}" if km is not None else "-"


def format_time(value: Optional[datetime]) -> str:
    """Format a UTC timestamp for display."""
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M")


def format_days_remaining(days: Optional[int]) -> str:
    """Format remaining days for display (e.g., '3mo 15d' or '-2mo 5d')."""
    if days is None:
        return "-"
    sign = "-" if days < 0 else ""
    days = abs(days)
    months = days // 30
    remaining_days = days % 30
    if months > 0:
        return f"{sign}{months}mo {remaining_days}d"
    return f"{sign}{days}d"


def truncate(text: Optional[str], max_len: int = 30) -> str:
    """Truncate text with ellipsis if too long."""
    if not text:
        return "-"
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


# =============================================================================
# Table builders
# =============================================================================


def make_vehicle_table(vehicles, active_by_vehicle) -> List[List[str]]:
    """Convert vehicles to table rows, with the earliest active assignment."""
    rows = []
    for vehicle in vehicles:
        assignment = active_by_vehicle.get(vehicle.id)
        rows.append(
            [
                vehicle.id,
                vehicle.plate_number,
                vehicle.model,
                format_km(vehicle.odometer_km),
                vehicle.status.value,
                assignment.driver_id if assignment else "-",
                format_time(assignment.end_time) if assignment else "-",
            ]
        )
    return rows


def make_assignment_table(assignments: List[Assignment]) -> List[List[str]]:
    """Convert assignments to table rows."""
    return [
        [
            a.id,
            a.vehicle_id,
            a.driver_id,
            format_time(a.start_time),
            format_time(a.end_time),
            a.status.value,
            truncate(a.reason),
        ]
        for a in assignments
    ]


def make_document_table(views: List[DocumentView]) -> List[List[str]]:
    """Convert document views to table rows."""
    return [
        [
            v.document.id,
            f"{v.document.owner_type}:{v.document.owner_id}",
            v.document.display_name,
            v.document.expiry_date.isoformat(),
            format_days_remaining(v.days_remaining),
        ]
        for v in views
    ]


def make_service_table(views: List[ServiceView]) -> List[List[str]]:
    """Convert service views to table rows."""
    return [
        [
            v.record.id,
            v.record.vehicle_id,
            v.record.service_date.isoformat(),
            format_km(v.record.last_service_km),
            format_km(v.current_km),
            format_km(v.record.next_service_km),
            format_km(v.km_remaining),
        ]
        for v in views
    ]


def make_calendar_table(events: List[CalendarEvent]) -> List[List[str]]:
    """Convert calendar events to table rows."""
    return [
        [
            format_time(e.start),
            format_time(e.end),
            e.type,
            e.vehicle_id,
            e.driver_id or "-",
            truncate(e.reason),
        ]
        for e in events
    ]


# =============================================================================
# Wiring
# =============================================================================


def build(args):
    """Open the fleet file and wire the scheduler and the status reader."""
    repository = YamlRepository(args.fleet_file, apply_env=True)
    clock = FixedClock(args.now) if args.now else SystemClock()
    scheduler = AssignmentScheduler(repository, clock=clock, sink=LoggingSink())
    reader = FleetStatusReader(repository, clock=clock)
    return repository, scheduler, reader


def print_assignment(assignment: Assignment) -> None:
    print(f"  Assignment: {assignment.id}")
    print(f"  Vehicle:    {assignment.vehicle_id}")
    print(f"  Driver:     {assignment.driver_id}")
    print(f"  Window:     {format_time(assignment.start_time)} -> {format_time(assignment.end_time)}")
    print(f"  Status:     {assignment.status.value}")


# =============================================================================
# Commands
# =============================================================================


def cmd_status(args):
    """Show every vehicle with its current status."""
    repository, scheduler, _ = build(args)
    # Block boundaries move with the clock alone.
    vehicles = sorted(retry_transient(scheduler.refresh_all), key=lambda v: v.plate_number)

    active = repository.list_assignments(status=AssignmentStatus.ACTIVE)
    active_by_vehicle = {}
    for assignment in sorted(active, key=lambda a: a.start_time):
        active_by_vehicle.setdefault(assignment.vehicle_id, assignment)

    print(f"Fleet: {args.fleet_file}")
    print(f"Vehicles: {len(vehicles)}")
    print(f"Drivers: {len(repository.list_drivers())}")
    print(f"Active assignments: {len(active)}")
    print()

    if not vehicles:
        print("No vehicles found.")
        return 0

    headers = ["ID", "Plate", "Model", "Odometer (km)", "Status", "Driver", "Until"]
    print(
        tabulate(
            make_vehicle_table(vehicles, active_by_vehicle), headers=headers, tablefmt="simple"
        )
    )
    return 0


def cmd_assign(args):
    """Assign a vehicle to a driver."""
    _, scheduler, _ = build(args)
    assignment = retry_transient(
        lambda: scheduler.create_assignment(
            args.vehicle_id, args.driver_id, args.start, args.end, args.reason or "", actor=args.actor
        )
    )
    print("Assignment created:")
    print_assignment(assignment)
    return 0


def cmd_complete(args):
    """Complete an active assignment."""
    _, scheduler, _ = build(args)
    assignment = retry_transient(
        lambda: scheduler.complete_assignment(args.assignment_id, args.at, actor=args.actor)
    )
    print("Assignment completed:")
    print_assignment(assignment)
    return 0


def cmd_cancel(args):
    """Cancel an active assignment."""
    _, scheduler, _ = build(args)
    assignment = retry_transient(
        lambda: scheduler.cancel_assignment(args.assignment_id, args.reason, actor=args.actor)
    )
    print("Assignment cancelled:")
    print_assignment(assignment)
    return 0


def cmd_block(args):
    """Block a vehicle."""
    _, scheduler, _ = build(args)
    block = retry_transient(
        lambda: scheduler.create_block(
            args.vehicle_id, args.start, args.end, args.reason or "", actor=args.actor
        )
    )
    print(f"Block created: {block.id}")
    print(f"  Vehicle: {block.vehicle_id}")
    print(f"  Window:  {format_time(block.start_time)} -> {format_time(block.end_time)}")
    return 0


def cmd_unblock(args):
    """Complete an active block."""
    _, scheduler, _ = build(args)
    block = retry_transient(lambda: scheduler.complete_block(args.block_id, args.at, actor=args.actor))
    print(f"Block completed: {block.id}")
    print(f"  Vehicle: {block.vehicle_id}")
    print(f"  Window:  {format_time(block.start_time)} -> {format_time(block.end_time)}")
    return 0


def cmd_assignments(args):
    """List assignments, newest first."""
    repository, scheduler, _ = build(args)
    status = AssignmentStatus(args.status) if args.status else None
    if args.vehicle:
        assignments = scheduler.assignments_for_vehicle(args.vehicle, status)
    elif args.driver:
        assignments = scheduler.assignments_for_driver(args.driver, status)
    else:
        assignments = sorted(
            repository.list_assignments(status=status), key=lambda a: a.start_time, reverse=True
        )

    if not assignments:
        print("No assignments found.")
        return 0

    headers = ["ID", "Vehicle", "Driver", "Start", "End", "Status", "Reason"]
    print(tabulate(make_assignment_table(assignments), headers=headers, tablefmt="simple"))
    return 0


def cmd_calendar(args):
    """List active assignments and blocks in a range."""
    _, _, reader = build(args)
    events = reader.calendar_events(args.start, args.end, args.vehicle)

    if not events:
        print("No events in range.")
        return 0

    headers = ["Start", "End", "Type", "Vehicle", "Driver", "Reason"]
    print(tabulate(make_calendar_table(events), headers=headers, tablefmt="simple"))
    return 0


def cmd_documents(args):
    """Show document status grouped by urgency."""
    _, _, reader = build(args)
    views = reader.documents_with_status(args.owner_type, args.owner_id)

    headers = ["ID", "Owner", "Document", "Expires", "Remaining"]
    groups = [
        ("EXPIRED", DocumentStatus.EXPIRED),
        ("EXPIRING SOON", DocumentStatus.EXPIRING_SOON),
        ("VALID", DocumentStatus.VALID),
    ]
    if not views:
        print("No documents found.")
        return 0
    for title, status in groups:
        group = [v for v in views if v.status == status]
        if group:
            print(f"{title}:")
            print(tabulate(make_document_table(group), headers=headers, tablefmt="simple"))
            print()
    return 0


def cmd_service(args):
    """Show service status grouped by urgency."""
    _, _, reader = build(args)
    views = reader.services_with_status(args.vehicle)

    headers = ["ID", "Vehicle", "Serviced", "Last (km)", "Current (km)", "Next (km)", "Remaining (km)"]
    groups = [
        ("OVERDUE", ServiceStatus.OVERDUE),
        ("DUE SOON", ServiceStatus.DUE_SOON),
        ("OK", ServiceStatus.OK),
    ]
    if not views:
        print("No service records found.")
        return 0
    for title, status in groups:
        group = [v for v in views if v.status == status]
        if group:
            print(f"{title}:")
            print(tabulate(make_service_table(group), headers=headers, tablefmt="simple"))
            print()
    return 0


def cmd_refresh(args):
    """Recompute every vehicle's status."""
    _, scheduler, _ = build(args)
    vehicles = retry_transient(scheduler.refresh_all)
    for vehicle in vehicles:
        print(f"  {vehicle.id}: {vehicle.status.value}")
    return 0


def cmd_log_service(args):
    """Record a completed service."""
    repository, _, reader = build(args)
    service_date = args.date or reader.clock.now().date().isoformat()
    record = retry_transient(
        lambda: repository.record_service(
            args.vehicle_id, args.km, service_date, next_service_km=args.next_km
        )
    )
    vehicle = repository.get_vehicle(record.vehicle_id)
    print(f"Service recorded: {record.id}")
    print(f"  Vehicle:   {record.vehicle_id}")
    print(f"  Date:      {record.service_date.isoformat()}")
    print(f"  At (km):   {format_km(record.last_service_km)}")
    print(f"  Next (km): {format_km(record.next_service_km)}")
    print(f"  Odometer:  {format_km(vehicle.odometer_km)}")
    return 0


def cmd_update_odometer(args):
    """Update a vehicle's odometer reading."""
    repository, _, _ = build(args)
    before = repository.get_vehicle(args.vehicle_id)
    if before is None:
        raise NotFoundError("Vehicle", args.vehicle_id)
    vehicle = retry_transient(lambda: repository.update_odometer(args.vehicle_id, args.km))
    print(f"Vehicle: {vehicle.id}")
    print(f"Previous odometer: {format_km(before.odometer_km)}")
    print(f"New odometer:      {format_km(vehicle.odometer_km)}")
    return 0


COMMANDS = {
    "status": cmd_status,
    "assign": cmd_assign,
    "complete": cmd_complete,
    "cancel": cmd_cancel,
    "assignments": cmd_assignments,
    "block": cmd_block,
    "unblock": cmd_unblock,
    "calendar": cmd_calendar,
    "documents": cmd_documents,
    "service": cmd_service,
    "refresh": cmd_refresh,
    "log-service": cmd_log_service,
    "update-odometer": cmd_update_odometer,
}


# =============================================================================
# Main
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Fleet scheduling and compliance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s fleet.yaml status
  %(prog)s fleet.yaml assign V1 D1 2024-01-01T00:00Z 2024-01-05T00:00Z --reason "site visit"
  %(prog)s fleet.yaml complete <assignment-id> --at 2024-01-04T12:00Z
  %(prog)s fleet.yaml cancel <assignment-id> --reason "trip cancelled"
  %(prog)s fleet.yaml block V1 2024-02-01 2024-02-03 --reason "annual inspection"
  %(prog)s fleet.yaml calendar 2024-01-01 2024-02-01
  %(prog)s fleet.yaml documents --owner-type driver
  %(prog)s fleet.yaml service --vehicle V1
  %(prog)s fleet.yaml log-service V1 48000 --date 2024-03-01
  %(prog)s fleet.yaml update-odometer V1 43250
""",
    )
    parser.add_argument("fleet_file", type=Path, help="Path to fleet YAML file")
    parser.add_argument(
        "--now",
        type=str,
        help="Evaluate as of this ISO timestamp instead of the system clock",
    )
    parser.add_argument("--actor", type=str, help="Who is making the change (audit trail)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log scheduler activity")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Show every vehicle with its current status")

    assign_parser = subparsers.add_parser("assign", help="Assign a vehicle to a driver")
    assign_parser.add_argument("vehicle_id", type=str)
    assign_parser.add_argument("driver_id", type=str)
    assign_parser.add_argument("start", type=str, help="Window start (ISO timestamp)")
    assign_parser.add_argument("end", type=str, help="Window end (ISO timestamp)")
    assign_parser.add_argument("--reason", type=str, help="Why the vehicle is assigned")

    complete_parser = subparsers.add_parser("complete", help="Complete an active assignment")
    complete_parser.add_argument("assignment_id", type=str)
    complete_parser.add_argument(
        "--at", type=str, help="Actual return time, if earlier than scheduled"
    )

    cancel_parser = subparsers.add_parser("cancel", help="Cancel an active assignment")
    cancel_parser.add_argument("assignment_id", type=str)
    cancel_parser.add_argument("--reason", type=str, help="Why it was cancelled")

    assignments_parser = subparsers.add_parser("assignments", help="List assignments")
    assignments_parser.add_argument("--vehicle", type=str, help="Only this vehicle")
    assignments_parser.add_argument("--driver", type=str, help="Only this driver")
    assignments_parser.add_argument(
        "--status", choices=[s.value for s in AssignmentStatus], help="Only this status"
    )

    block_parser = subparsers.add_parser("block", help="Block a vehicle for a window")
    block_parser.add_argument("vehicle_id", type=str)
    block_parser.add_argument("start", type=str, help="Window start (ISO timestamp)")
    block_parser.add_argument("end", type=str, help="Window end (ISO timestamp)")
    block_parser.add_argument("--reason", type=str, help="Why the vehicle is blocked")

    unblock_parser = subparsers.add_parser("unblock", help="Complete an active block")
    unblock_parser.add_argument("block_id", type=str)
    unblock_parser.add_argument("--at", type=str, help="When the block actually ended")

    calendar_parser = subparsers.add_parser("calendar", help="List events in a date range")
    calendar_parser.add_argument("start", type=str, help="Range start (ISO date or timestamp)")
    calendar_parser.add_argument("end", type=str, help="Range end (ISO date or timestamp)")
    calendar_parser.add_argument("--vehicle", type=str, help="Only this vehicle")

    documents_parser = subparsers.add_parser("documents", help="Show document status")
    documents_parser.add_argument("--owner-type", choices=["vehicle", "driver"])
    documents_parser.add_argument("--owner-id", type=str)

    service_parser = subparsers.add_parser("service", help="Show service status")
    service_parser.add_argument("--vehicle", type=str, help="Only this vehicle")

    subparsers.add_parser("refresh", help="Recompute every vehicle's status")

    log_service_parser = subparsers.add_parser("log-service", help="Record a completed service")
    log_service_parser.add_argument("vehicle_id", type=str)
    log_service_parser.add_argument("km", type=float, help="Odometer reading at the service")
    log_service_parser.add_argument(
        "--date", type=str, help="Service date in YYYY-MM-DD format (default: today)"
    )
    log_service_parser.add_argument(
        "--next-km",
        type=float,
        help="Odometer reading the next service is due at (default: one interval on)",
    )

    odometer_parser = subparsers.add_parser(
        "update-odometer", help="Record a new odometer reading"
    )
    odometer_parser.add_argument("vehicle_id", type=str)
    odometer_parser.add_argument("km", type=float, help="Current odometer reading")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Validate fleet file exists
    if not args.fleet_file.exists():
        print(f"Error: File not found: {args.fleet_file}")
        return 1

    try:
        return COMMANDS[args.command](args)
    except FleetError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main() or 0)
