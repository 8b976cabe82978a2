"""Provisioner that delegates room creation to a meeting service over HTTP."""
from __future__ import annotations

from typing import Any, Optional, Sequence

import httpx

from ..errors import ProvisioningError
from .base import JoinArtifact, ProvisionedRoom, RoomProvisioner


class HttpRoomProvisioner(RoomProvisioner):
    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        if not base_url and client is None:
            raise ValueError("ROOM_PROVISIONER_URL is required for the http provisioner")
        headers = {"User-Agent": "batchplan/0.1.0", "Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout
        )

    @staticmethod
    def _unwrap(json_data: Any) -> Any:
        """Accept both bare payloads and ``{"success": true, "data": {...}}`` envelopes."""
        if isinstance(json_data, dict) and "data" in json_data:
            return json_data["data"]
        return json_data

    def provision(self, session, participants: Sequence) -> ProvisionedRoom:
        body = {
            "session_id": session.id,
            "batch_id": session.batch_id,
            "subject": session.subject,
            "room_reference": session.room_reference,
            "scheduled_start": session.starts_at.isoformat(),
            "duration_minutes": session.duration_minutes,
            "participants": [
                {"identity": p.identity, "name": p.name, "role": p.role} for p in participants
            ],
        }
        try:
            resp = self._client.post("/rooms", json=body)
        except httpx.TimeoutException as exc:
            raise ProvisioningError(
                f"Room provisioning timed out for session {session.id}",
                {"session_id": session.id},
            ) from exc
        except httpx.HTTPError as exc:
            raise ProvisioningError(
                f"Room provisioning failed for session {session.id}: {exc}",
                {"session_id": session.id},
            ) from exc
        if resp.status_code >= 400:
            raise ProvisioningError(
                f"Room provisioner returned HTTP {resp.status_code}: {resp.text[:200]}",
                {"session_id": session.id, "status_code": resp.status_code},
            )

        try:
            payload = self._unwrap(resp.json())
        except ValueError as exc:
            raise ProvisioningError(
                "Room provisioner returned a non-JSON response",
                {"session_id": session.id, "status_code": resp.status_code},
            ) from exc
        room_reference = payload.get("room_reference") if isinstance(payload, dict) else None
        if not room_reference:
            raise ProvisioningError(
                "Room provisioner response did not include a room reference",
                {"session_id": session.id},
            )
        entries = payload.get("participants") or []
        if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
            raise ProvisioningError(
                "Room provisioner returned malformed participants",
                {"session_id": session.id, "status_code": resp.status_code},
            )
        by_identity = {p.identity: p for p in participants}
        artifacts = []
        for entry in entries:
            identity = entry.get("identity")
            participant = by_identity.get(identity)
            artifacts.append(
                JoinArtifact(
                    identity=identity,
                    name=entry.get("name") or (participant.name if participant else identity),
                    role=entry.get("role") or (participant.role if participant else "participant"),
                    token=entry.get("token", ""),
                    join_url=entry.get("join_url", ""),
                )
            )
        return ProvisionedRoom(
            room_reference=room_reference,
            join_artifacts=tuple(artifacts),
            metadata={k: v for k, v in payload.items() if k not in {"room_reference", "participants"}},
        )
