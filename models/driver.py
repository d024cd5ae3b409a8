"""Driver class for driver identification."""

from typing import Optional


class Driver:
    """A driver who can hold one vehicle at a time."""

    def __init__(
        self,
        id: str,
        name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ):
        self.id = id
        self.name = name
        self.email = email
        self.phone = phone

    def __repr__(self) -> str:
        return f"<Driver {self.id} {self.name}>"
