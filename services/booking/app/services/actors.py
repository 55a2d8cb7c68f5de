"""Authenticated callers and the booking party checks applied to them."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID


class Role(str, Enum):
    CUSTOMER = "customer"
    PROFESSIONAL = "professional"
    EMPLOYEE = "employee"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    id: UUID
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class Party(str, Enum):
    CUSTOMER = "customer"
    PROFESSIONAL = "professional"
    ADMIN = "admin"


def party_of(actor: Optional[Actor], booking, project=None) -> Optional[Party]:
    """Return the capacity in which ``actor`` takes part in ``booking``.

    The professional side is the booking's professional or, for project
    bookings, the project owner. ``None`` means the caller is unrelated.
    """
    if actor is None:
        return None
    if actor.is_admin:
        return Party.ADMIN
    if booking.customer_id == actor.id:
        return Party.CUSTOMER
    if booking.professional_id is not None and booking.professional_id == actor.id:
        return Party.PROFESSIONAL
    if project is not None and project.professional_id == actor.id:
        return Party.PROFESSIONAL
    return None
