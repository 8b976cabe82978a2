"""REST API definition using Flask-RESTX."""
from __future__ import annotations

from flask import Blueprint, Flask
from flask_restx import Api

from .health import ns as health_ns
from .sessions import ns as sessions_ns
from .timetable import ns as timetable_ns


def register_namespaces(api: Api) -> None:
    """Register all API namespaces."""
    api.add_namespace(health_ns, path="/health")
    api.add_namespace(sessions_ns, path="/sessions")
    api.add_namespace(timetable_ns, path="/timetable")


def init_api(app: Flask) -> Api:
    """Mount the API under ``<URL_PREFIX>/api`` with Swagger UI at ``/api/docs``."""
    blueprint = Blueprint("api", __name__, url_prefix=f"{app.config.get('URL_PREFIX', '')}/api")
    api = Api(
        blueprint,
        version=app.config.get("API_VERSION", "0.1.0"),
        title=app.config.get("API_TITLE", "Batchplan API"),
        doc="/docs",
    )
    register_namespaces(api)
    app.register_blueprint(blueprint)
    return api
