from __future__ import annotations

import json
import logging
from typing import Any

from google.cloud import pubsub_v1

from .models.bundle import BundleStatusChange
from .models.workbook import ForkResult

logger = logging.getLogger(__name__)


class MaterialEventPublisher:
    """Publishes material workbook change events to Google Cloud Pub/Sub."""

    def __init__(self, project_id: str, *, topic_id: str = "material-events", publisher: Any = None) -> None:
        self.project_id = project_id
        self.topic_id = topic_id
        self.publisher = publisher or pubsub_v1.PublisherClient()

    def publish(
        self,
        message: dict[str, Any],
        *,
        attributes: dict[str, str] | None = None,
    ) -> str:
        """Publish one JSON message to the events topic.

        Returns:
            Message ID from Pub/Sub
        """
        topic_path = self.publisher.topic_path(self.project_id, self.topic_id)
        data = json.dumps(message, default=str).encode("utf-8")

        future = self.publisher.publish(topic_path, data, **(attributes or {}))
        message_id = future.result()

        logger.info(
            "Published material event",
            extra={
                "topic_id": self.topic_id,
                "message_id": message_id,
                "attributes": attributes,
            },
        )
        return message_id

    def publish_workbook_locked(self, *, job_id: str, result: ForkResult) -> str:
        message = {
            "job_id": job_id,
            "locked_version_id": result.locked.id,
            "locked_version_number": result.locked.version_number,
            "working_version_id": result.working.id,
            "working_version_number": result.working.version_number,
            "locked_at": result.locked.locked_at.isoformat() if result.locked.locked_at else None,
        }
        attributes = {"job_id": job_id, "event_type": "workbook_locked"}
        return self.publish(message, attributes=attributes)

    def publish_bundle_status_changed(self, *, change: BundleStatusChange) -> str:
        bundle = change.bundle
        message = {
            "job_id": bundle.job_id,
            "bundle_id": bundle.id,
            "status": bundle.status.value,
            "item_ids": list(change.updated_item_ids),
        }
        attributes = {"job_id": bundle.job_id, "event_type": "bundle_status_changed"}
        return self.publish(message, attributes=attributes)


__all__ = ["MaterialEventPublisher"]
