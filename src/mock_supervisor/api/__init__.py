"""HTTP control API for the mock server supervisor."""

from .server import create_app, run_api, serialize_record

__all__ = ["create_app", "run_api", "serialize_record"]
