"""Deferred work: coupon expiry events and the worker that consumes them.

Events are written to a MongoDB outbox (``scheduled_events``) after the
triggering write succeeds. ``process_due_events`` claims and runs them from a
separate process. When an Inngest event key is configured the events are
published to Inngest's event API instead and the outbox stays empty.
"""

from datetime import datetime
from typing import Callable, Dict, Optional

import requests
from pymongo import ReturnDocument

from .errors import CollaboratorError
from .serializers import parse_iso_datetime

COUPON_EXPIRED_EVENT = "app/coupon.expired"


class SchedulerError(CollaboratorError):
    pass


def to_json_compatible(data: Dict) -> Dict:
    converted = {}
    for key, value in data.items():
        if isinstance(value, datetime):
            converted[key] = value.isoformat() + "Z"
        else:
            converted[key] = value
    return converted


class OutboxScheduler:
    def __init__(self, collection):
        self.collection = collection

    def send(self, name: str, data: Dict) -> str:
        try:
            result = self.collection.insert_one(
                {
                    "name": name,
                    "data": dict(data),
                    "status": "pending",
                    "created_at": datetime.utcnow(),
                    "processed_at": None,
                }
            )
        except Exception as exc:
            raise SchedulerError(f"Could not record event {name}: {exc}") from exc
        return str(result.inserted_id)


class InngestScheduler:
    def __init__(self, event_key: str, base_url: str = "https://inn.gs", timeout: float = 30):
        self.event_key = event_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def send(self, name: str, data: Dict) -> str:
        try:
            response = requests.post(
                f"{self.base_url}/e/{self.event_key}",
                json={"name": name, "data": to_json_compatible(data)},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise SchedulerError(f"Inngest rejected {name}: {exc}") from exc

        if response.status_code >= 400:
            raise SchedulerError(
                f"Inngest rejected {name} with {response.status_code}: {response.text}"
            )

        ids = (response.json() or {}).get("ids") or []
        return str(ids[0]) if ids else ""


def build_scheduler(config, db):
    event_key = config.get("INNGEST_EVENT_KEY")
    if event_key:
        return InngestScheduler(
            event_key,
            base_url=config["INNGEST_BASE_URL"],
            timeout=config["COLLABORATOR_TIMEOUT_SECONDS"],
        )
    return OutboxScheduler(db.scheduled_events)


def expire_coupon(db, data: Dict, logger) -> None:
    code = str(data.get("code") or "").strip().upper()
    if not code:
        raise ValueError("Coupon expiry event without a code.")
    query = {"code": code}
    # Only the coupon this event was scheduled for; a re-created code keeps its own expiry.
    expires_at = parse_iso_datetime(data.get("expires_at"))
    if expires_at is not None:
        query["expires_at"] = expires_at
    result = db.coupons.delete_one(query)
    if result.deleted_count:
        logger.info("Expired coupon %s removed", code)
    else:
        logger.info("Expired coupon %s was already gone", code)


EVENT_HANDLERS: Dict[str, Callable] = {
    COUPON_EXPIRED_EVENT: expire_coupon,
}


def due_filter(now: datetime) -> Dict:
    # Events without an expiry are due immediately.
    return {
        "status": "pending",
        "$or": [
            {"data.expires_at": {"$lte": now}},
            {"data.expires_at": None},
        ],
    }


def process_due_events(db, logger, now: Optional[datetime] = None, limit: Optional[int] = None) -> int:
    """Claim and run every due outbox event, returning how many were handled."""
    now = now or datetime.utcnow()
    handled = 0

    while limit is None or handled < limit:
        event = db.scheduled_events.find_one_and_update(
            due_filter(now),
            {"$set": {"status": "processing", "claimed_at": datetime.utcnow()}},
            sort=[("created_at", 1)],
            return_document=ReturnDocument.AFTER,
        )
        if not event:
            break

        handler = EVENT_HANDLERS.get(event.get("name"))
        update: Dict = {"processed_at": datetime.utcnow()}
        if handler is None:
            logger.warning("No handler for scheduled event %s", event.get("name"))
            update["status"] = "skipped"
        else:
            try:
                handler(db, event.get("data") or {}, logger)
                update["status"] = "done"
            except Exception as exc:
                logger.exception("Scheduled event %s failed", event.get("_id"))
                update["status"] = "failed"
                update["error"] = str(exc)

        db.scheduled_events.update_one({"_id": event["_id"]}, {"$set": update})
        handled += 1

    return handled
