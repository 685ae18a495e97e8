"""
Activity log storage models.

ActivityLog is the per-root rollup pointer; ActivityLogDetail is the
append-only record of each individual change filed under it.
"""
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from activitylog.database import Base


class ActivityLog(Base):
    """
    One row per tracked root entity.

    Invariants:
    - (entity_type, entity_id) is unique
    - last_batch_no starts at 1, never decreases, and grows by exactly 1 per new batch
    - seen_all is reset to False on every write
    """
    __tablename__ = "activity_logs"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_activity_log_entity"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    entity_type = Column(String(100), nullable=False)
    entity_id = Column(String(64), nullable=False)
    display_label = Column(String, nullable=True)  # Snapshot at creation time

    last_event_kind = Column(String(50), nullable=False)
    last_batch_no = Column(Integer, nullable=False, default=1)
    last_actor_id = Column(String, nullable=True, index=True)  # Null means system
    timestamp = Column(DateTime, nullable=False, index=True)

    seen_all = Column(Boolean, nullable=False, default=False)

    details = relationship(
        "ActivityLogDetail",
        back_populates="activity_log",
        cascade="all, delete-orphan",
        order_by=lambda: (
            ActivityLogDetail.batch_no.desc(),
            ActivityLogDetail.timestamp.desc(),
            ActivityLogDetail.id.desc(),
        ),
    )

    def mark_as_seen(self) -> None:
        self.seen_all = True

    def mark_as_unseen(self) -> None:
        self.seen_all = False

    def __repr__(self):
        return f"<ActivityLog {self.entity_type}#{self.entity_id} batch={self.last_batch_no}>"


class ActivityLogDetail(Base):
    """
    A single create/update/delete of one entity, parent or child.

    Invariants:
    - Written once, never edited
    - batch_no equals the owning log's last_batch_no at insert time
    - Parent/child classification is derived, never stored
    """
    __tablename__ = "activity_log_details"
    __table_args__ = (
        Index("idx_activity_log_batch", "activity_log_id", "batch_no"),
        Index("idx_activity_detail_entity", "entity_type", "entity_id"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    activity_log_id = Column(
        Integer,
        ForeignKey("activity_logs.id", ondelete="CASCADE"),
        nullable=False
    )
    batch_no = Column(Integer, nullable=False)

    # What changed
    entity_type = Column(String(100), nullable=False)
    entity_id = Column(String(64), nullable=False)
    event_kind = Column(String(50), nullable=False)
    changes = Column(JSON, nullable=True)  # {"old": {...}, "new": {...}}

    # Who and when
    actor_id = Column(String, nullable=True)
    timestamp = Column(DateTime, nullable=False, index=True)

    activity_log = relationship("ActivityLog", back_populates="details")

    @property
    def old_values(self) -> dict:
        return (self.changes or {}).get("old") or {}

    @property
    def new_values(self) -> dict:
        return (self.changes or {}).get("new") or {}

    def is_parent_change(self, log: "ActivityLog" = None) -> bool:
        """True when this detail changed the log's own root entity."""
        log = log if log is not None else self.activity_log
        return (
            log is not None
            and self.entity_type == log.entity_type
            and self.entity_id == log.entity_id
        )

    def __repr__(self):
        return (
            f"<ActivityLogDetail {self.entity_type}#{self.entity_id} "
            f"{self.event_kind} batch={self.batch_no}>"
        )
