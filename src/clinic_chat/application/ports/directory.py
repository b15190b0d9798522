from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class AppointmentParties:
    appointment_id: int
    patient_id: int
    doctor_id: int


class ParticipantDirectory(Protocol):
    async def exists(self, participant_id: int) -> bool: ...


class AppointmentDirectory(Protocol):
    async def get_parties(self, appointment_id: int) -> AppointmentParties | None:
        """Return None when the appointment has no resolvable parties."""
        ...
