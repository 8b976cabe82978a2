"""Built-in provisioner: room references and signed join tokens, no network."""
from __future__ import annotations

import secrets
import string
from typing import Any, Sequence
from urllib.parse import quote

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .base import JoinArtifact, ProvisionedRoom, RoomProvisioner


_ROOM_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def room_reference_for(session, prefix: str) -> str:
    suffix = "".join(secrets.choice(_ROOM_SUFFIX_ALPHABET) for _ in range(6))
    return (
        f"{prefix}_{session.scheduled_date:%Y%m%d}_{session.start_time:%H%M}_{suffix}"
    )


class LocalRoomProvisioner(RoomProvisioner):
    SALT = "batchplan-join"

    def __init__(self, secret_key: str, *, prefix: str = "batchplan", join_base_url: str = ""):
        self.prefix = prefix
        self.join_base_url = join_base_url.rstrip("/")
        self._serializer = URLSafeTimedSerializer(secret_key, salt=self.SALT)

    def provision(self, session, participants: Sequence) -> ProvisionedRoom:
        room_reference = session.room_reference or room_reference_for(session, self.prefix)
        artifacts = tuple(
            self._artifact(session, room_reference, participant) for participant in participants
        )
        return ProvisionedRoom(
            room_reference=room_reference,
            join_artifacts=artifacts,
            metadata={"session_id": session.id, "batch_id": session.batch_id},
        )

    def _artifact(self, session, room_reference: str, participant) -> JoinArtifact:
        token = self._serializer.dumps(
            {
                "room": room_reference,
                "session_id": session.id,
                "identity": f"{participant.role}_{participant.identity}",
                "role": participant.role,
            }
        )
        return JoinArtifact(
            identity=participant.identity,
            name=participant.name,
            role=participant.role,
            token=token,
            join_url=f"{self.join_base_url}/classroom/{session.id}?token={quote(token)}",
        )

    def verify_token(self, token: str, *, max_age: int | None = None) -> dict[str, Any] | None:
        try:
            return self._serializer.loads(token, max_age=max_age)
        except (BadSignature, SignatureExpired):
            return None
