"""
Per-app service handles: the record store client, the dashboard view
registry and the record id generator.
The store itself lives in the hosted backend; the app only keeps the client.
A request carrying a valid session gets a store bound to that session.
"""

from flask import Flask, current_app, g

from medchain.services.record_store.base_store import RecordStore

_EXTENSION_KEY = "medchain.record_store"


def init_store(app: Flask, store: RecordStore) -> None:
    app.extensions[_EXTENSION_KEY] = store


def get_store() -> RecordStore:
    """Return the session-bound store for this request, else the app store."""
    bound = getattr(g, "store", None)
    if bound is not None:
        return bound
    return current_app.extensions[_EXTENSION_KEY]


def get_app_store() -> RecordStore:
    return current_app.extensions[_EXTENSION_KEY]


def init_services(app: Flask, registry, id_generator) -> None:
    app.extensions["medchain.view_registry"] = registry
    app.extensions["medchain.id_generator"] = id_generator


def get_view_registry():
    return current_app.extensions["medchain.view_registry"]


def get_id_generator():
    return current_app.extensions["medchain.id_generator"]
