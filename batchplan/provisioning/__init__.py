"""Room provisioner adapters and factory."""
from __future__ import annotations

from flask import Flask, current_app

from .base import JoinArtifact, ProvisionedRoom, RoomProvisioner


EXTENSION_KEY = "batchplan.provisioner"


def build_provisioner(app: Flask) -> RoomProvisioner:
    """Build the adapter named by ``ROOM_PROVISIONER``."""
    provider = (app.config.get("ROOM_PROVISIONER") or "local").lower()
    if provider == "local":
        from .local import LocalRoomProvisioner

        return LocalRoomProvisioner(
            app.config["SECRET_KEY"],
            prefix=app.config.get("ROOM_PREFIX", "batchplan"),
            join_base_url=app.config.get("JOIN_BASE_URL", ""),
        )
    if provider == "http":
        from .http import HttpRoomProvisioner

        return HttpRoomProvisioner(
            app.config.get("ROOM_PROVISIONER_URL", ""),
            token=app.config.get("ROOM_PROVISIONER_TOKEN") or None,
            timeout=float(app.config.get("ROOM_PROVISIONER_TIMEOUT", 10)),
        )
    raise ValueError(f"Unsupported room provisioner: {provider}")


def get_provisioner() -> RoomProvisioner:
    return current_app.extensions[EXTENSION_KEY]


__all__ = [
    "EXTENSION_KEY",
    "JoinArtifact",
    "ProvisionedRoom",
    "RoomProvisioner",
    "build_provisioner",
    "get_provisioner",
]
