"""Runtime configuration read from environment variables.

ENVIRONMENT                  dev | staging | prod (default dev)
PROJECT_ID                   GCP project for Firestore, Pub/Sub and Cloud Logging
MATERIALS_STORE              memory | firestore (default: memory in dev, firestore otherwise)
PUBSUB_TOPIC_MATERIAL_EVENTS topic for change events (default material-events)
MATERIALS_PUBLISH_EVENTS     "1"/"true" to publish change events (default off in dev)
"""

from __future__ import annotations

import os
from typing import Literal, Mapping

from pydantic import BaseModel


class Settings(BaseModel):
    environment: str = "dev"
    project_id: str | None = None
    store: Literal["memory", "firestore"] = "memory"
    events_topic: str = "material-events"
    publish_events: bool = False


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    environment = env.get("ENVIRONMENT", "dev")
    default_store = "memory" if environment == "dev" else "firestore"
    publish = env.get("MATERIALS_PUBLISH_EVENTS")
    return Settings(
        environment=environment,
        project_id=env.get("PROJECT_ID") or None,
        store=env.get("MATERIALS_STORE", default_store),
        events_topic=env.get("PUBSUB_TOPIC_MATERIAL_EVENTS", "material-events"),
        publish_events=_flag(publish) if publish is not None else environment != "dev",
    )


__all__ = ["Settings", "load_settings"]
