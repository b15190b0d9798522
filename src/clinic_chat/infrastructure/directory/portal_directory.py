"""Participant / appointment lookups against the portal HTTP API."""
from __future__ import annotations

import logging

import httpx

from clinic_chat.application.exceptions import StoreUnavailableError
from clinic_chat.application.ports.directory import AppointmentParties

logger = logging.getLogger(__name__)


class PortalDirectory:
    """Implements ParticipantDirectory and AppointmentDirectory."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, base_url: str, token: str | None, timeout: float) -> PortalDirectory:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        return cls(httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def exists(self, participant_id: int) -> bool:
        response = await self._get(f"/api/users/{participant_id}")
        return response is not None

    async def get_parties(self, appointment_id: int) -> AppointmentParties | None:
        response = await self._get(f"/api/appointments/{appointment_id}")
        if response is None:
            return None
        data = response.json()
        patient_id = data.get("patient_id")
        doctor_id = data.get("doctor_id")
        if patient_id is None or doctor_id is None or patient_id == doctor_id:
            logger.warning("Appointment %s has unusable parties: %s", appointment_id, data)
            return None
        return AppointmentParties(
            appointment_id=appointment_id,
            patient_id=int(patient_id),
            doctor_id=int(doctor_id),
        )

    async def _get(self, path: str) -> httpx.Response | None:
        """GET ``path``; None on 404, StoreUnavailableError on transport or server failure."""
        try:
            response = await self._client.get(path)
        except httpx.HTTPError as exc:
            logger.warning("Portal request %s failed: %s", path, exc)
            raise StoreUnavailableError("Portal directory unreachable") from exc
        if response.status_code == 404:
            return None
        if response.status_code >= 500:
            raise StoreUnavailableError(f"Portal directory returned {response.status_code}")
        response.raise_for_status()
        return response
