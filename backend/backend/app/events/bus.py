from __future__ import annotations

from sqlalchemy.orm import Session

from app.events.outbox import OutboxEvent


def publish(db: Session, topic: str, payload: dict) -> OutboxEvent:
    """Publish an event by adding it to the transactional outbox.

    Does not commit: the event becomes visible together with the caller's
    writes, or not at all.
    """
    evt = OutboxEvent(topic=topic, payload=payload or {}, delivered=False)
    db.add(evt)
    return evt
