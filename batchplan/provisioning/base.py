"""Contract with the external meeting-room provisioner.

Only the start operation calls a provisioner. An implementation either
returns a :class:`ProvisionedRoom` or raises
:class:`~batchplan.errors.ProvisioningError`; time-outs must surface as that
error too so the session stays ``scheduled``.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from ..models import BatchSession
    from ..roster import Participant


@dataclass(frozen=True)
class JoinArtifact:
    identity: str
    name: str
    role: str
    token: str
    join_url: str

    def as_payload(self) -> dict[str, str]:
        return {
            "identity": self.identity,
            "name": self.name,
            "role": self.role,
            "token": self.token,
            "join_url": self.join_url,
        }


@dataclass(frozen=True)
class ProvisionedRoom:
    room_reference: str
    join_artifacts: tuple[JoinArtifact, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)


class RoomProvisioner(ABC):
    @abstractmethod
    def provision(
        self, session: "BatchSession", participants: Sequence["Participant"]
    ) -> ProvisionedRoom:
        """Create (or reuse) the room for ``session`` and mint join artifacts.

        Raises:
            ProvisioningError: the room could not be obtained in time.
        """
