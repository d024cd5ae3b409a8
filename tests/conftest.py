"""Shared fixtures: an in-memory fleet with two vehicles and two drivers."""

import itertools

import pytest

from models import Driver, Vehicle
from scheduling import AssignmentScheduler, FixedClock, FleetStatusReader, ResourceRepository


class RecordingSink:
    """Keeps every event it receives."""

    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)


@pytest.fixture
def clock():
    return FixedClock("2024-01-01T00:00:00Z")


@pytest.fixture
def repository():
    repo = ResourceRepository()
    repo.add_vehicle(Vehicle("V1", "12-D-1234", "Toyota Corolla", 2019, odometer_km=42000))
    repo.add_vehicle(Vehicle("V2", "19-G-5678", "Ford Transit", 2021, odometer_km=15500))
    repo.add_driver(Driver("D1", "Aoife Byrne", "aoife@example.com"))
    repo.add_driver(Driver("D2", "Tomas Walsh", phone="+353 87 000 0000"))
    return repo


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def scheduler(repository, clock, sink):
    counter = itertools.count(1)
    return AssignmentScheduler(
        repository, clock=clock, sink=sink, id_factory=lambda: f"R{next(counter)}"
    )


@pytest.fixture
def reader(repository, clock):
    return FleetStatusReader(repository, clock=clock)
