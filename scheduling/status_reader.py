"""Read-side status derivation for documents, service records and the calendar."""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union

from models.assignment import Assignment, VehicleBlock
from models.calculations import (
    as_utc,
    days_remaining,
    document_status,
    service_status,
    windows_overlap,
)
from models.document import Document
from models.errors import NotFoundError, ValidationError
from models.service_record import ServiceRecord
from models.status import AssignmentStatus, BlockStatus, DocumentStatus, ServiceStatus

from .clock import SystemClock


@dataclass
class DocumentView:
    """A document with its status as of the read."""

    document: Document
    status: DocumentStatus
    days_remaining: int

    @property
    def needs_attention(self) -> bool:
        return self.status in (DocumentStatus.EXPIRED, DocumentStatus.EXPIRING_SOON)


@dataclass
class ServiceView:
    """A service record with its status as of the read."""

    record: ServiceRecord
    status: ServiceStatus
    current_km: float
    km_remaining: float

    @property
    def is_due(self) -> bool:
        return self.status in (ServiceStatus.OVERDUE, ServiceStatus.DUE_SOON)


@dataclass
class CalendarEvent:
    id: str
    type: str
    vehicle_id: str
    driver_id: Optional[str]
    start: datetime
    end: datetime
    reason: str


class FleetStatusReader:
    """
    Derives document and service status on every read.

    Nothing is cached: status moves with the clock and the odometer, and
    neither produces a write to invalidate a cache. No locks are taken;
    reads see committed data only.
    """

    def __init__(self, repository, clock=None, settings=None):
        self.repository = repository
        self.clock = clock or SystemClock()
        self.settings = settings or repository.settings

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    def _document_view(self, document: Document, now: datetime, warn_days: float) -> DocumentView:
        return DocumentView(
            document=document,
            status=document_status(document.expiry_date, now, warn_days),
            days_remaining=days_remaining(document.expiry_date, now),
        )

    def document_status(self, document_id: str) -> DocumentView:
        document = self.repository.get_document(document_id)
        if document is None:
            raise NotFoundError("Document", document_id)
        return self._document_view(document, self.clock.now(), self.settings.warn_threshold_days)

    def documents_with_status(
        self, owner_type: Optional[str] = None, owner_id: Optional[str] = None
    ) -> List[DocumentView]:
        """All matching documents, most urgent first, then soonest expiry."""
        now = self.clock.now()
        views = [
            self._document_view(d, now, self.settings.warn_threshold_days)
            for d in self.repository.list_documents(owner_type, owner_id)
        ]
        return sorted(views, key=lambda v: (v.status.value, v.document.expiry_date))

    def expiring_documents(self, threshold_days: Optional[float] = None) -> List[DocumentView]:
        """Documents not yet expired whose expiry falls within the threshold."""
        if threshold_days is None:
            threshold_days = self.settings.warn_threshold_days
        now = self.clock.now()
        views = [
            self._document_view(d, now, threshold_days) for d in self.repository.list_documents()
        ]
        expiring = [v for v in views if v.status == DocumentStatus.EXPIRING_SOON]
        return sorted(expiring, key=lambda v: v.document.expiry_date)

    # -------------------------------------------------------------------------
    # Service records
    # -------------------------------------------------------------------------

    def _service_view(self, record: ServiceRecord) -> ServiceView:
        # The vehicle's odometer may have moved past the record's reading.
        current_km = record.current_km
        vehicle = self.repository.get_vehicle(record.vehicle_id)
        if vehicle is not None and vehicle.odometer_km > current_km:
            current_km = vehicle.odometer_km
        return ServiceView(
            record=record,
            status=service_status(
                current_km, record.next_service_km, self.settings.due_soon_threshold_km
            ),
            current_km=current_km,
            km_remaining=record.next_service_km - current_km,
        )

    def service_status(self, record_id: str) -> ServiceView:
        record = self.repository.get_service_record(record_id)
        if record is None:
            raise NotFoundError("Service record", record_id)
        return self._service_view(record)

    def services_with_status(self, vehicle_id: Optional[str] = None) -> List[ServiceView]:
        views = [self._service_view(r) for r in self.repository.list_service_records(vehicle_id)]
        return sorted(views, key=lambda v: (v.status.value, v.km_remaining))

    def vehicles_due_for_service(self) -> List[ServiceView]:
        """Records that are DueSoon or Overdue, fewest km remaining first."""
        return [v for v in self.services_with_status() if v.is_due]

    # -------------------------------------------------------------------------
    # Calendar
    # -------------------------------------------------------------------------

    def calendar_events(
        self,
        range_start: Union[str, datetime],
        range_end: Union[str, datetime],
        vehicle_id: Optional[str] = None,
    ) -> List[CalendarEvent]:
        """Active assignments and blocks intersecting [range_start, range_end)."""
        start, end = as_utc(range_start), as_utc(range_end)
        if end <= start:
            raise ValidationError("Calendar range end must be after its start")
        events: List[CalendarEvent] = []
        active = self.repository.list_assignments(
            vehicle_id=vehicle_id, status=AssignmentStatus.ACTIVE
        )
        for a in active:
            if windows_overlap(a.start_time, a.end_time, start, end):
                events.append(_assignment_event(a))
        for b in self.repository.list_blocks(vehicle_id=vehicle_id, status=BlockStatus.ACTIVE):
            if windows_overlap(b.start_time, b.end_time, start, end):
                events.append(_block_event(b))
        return sorted(events, key=lambda e: (e.start, e.vehicle_id, e.id))


def _assignment_event(a: Assignment) -> CalendarEvent:
    return CalendarEvent(a.id, "assignment", a.vehicle_id, a.driver_id, a.start_time, a.end_time, a.reason)


def _block_event(b: VehicleBlock) -> CalendarEvent:
    return CalendarEvent(b.id, "block", b.vehicle_id, None, b.start_time, b.end_time, b.reason)
