"""ASGI entrypoint for the plan importer API."""

from plan_importer.api.app import create_app
from plan_importer.containers import build_container

app = create_app(build_container())
