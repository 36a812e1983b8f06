from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, DateTime, Integer, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, utcnow
from app.db.models.genealogy import SerialNumber

STATUS_PENDING = "PENDING"
STATUS_CONSUMED = "CONSUMED"

QUEUE_ROLLS = "rolls"
QUEUE_FITUP = "fitup"

class MaterialQueueItem(Base, HasId, HasCreatedAt):
    __tablename__ = "mq_item"
    work_center_id: Mapped[str] = mapped_column(ForeignKey("ref_work_center.id"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=STATUS_PENDING, nullable=False, index=True)
    queue_type: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str] = mapped_column(String(256), default="", nullable=False)
    card_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    card_color: Mapped[str | None] = mapped_column(String(16), nullable=True)
    serial_number_id: Mapped[str | None] = mapped_column(ForeignKey("gen_serial_number.id"), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    quantity_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    operator_id: Mapped[str | None] = mapped_column(ForeignKey("ref_operator.id"), nullable=True)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    retired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    serial_number: Mapped[SerialNumber | None] = relationship()

Index("ix_mq_item_wc_status_pos", MaterialQueueItem.work_center_id, MaterialQueueItem.status, MaterialQueueItem.position)

class QueueTransaction(Base, HasId):
    """Recent-activity row; one per queue mutation."""
    __tablename__ = "mq_transaction"
    work_center_id: Mapped[str] = mapped_column(ForeignKey("ref_work_center.id"), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(24), nullable=False)
    item_summary: Mapped[str] = mapped_column(String(256), default="", nullable=False)
    operator_name: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

Index("ix_mq_txn_wc_time", QueueTransaction.work_center_id, QueueTransaction.timestamp)
