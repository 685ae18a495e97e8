"""Pytest configuration and shared fixtures."""
import os

# Keep the application engine off disk before anything imports it
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta

import pytest
from sqlalchemy import Column, ForeignKey, Integer, Numeric, String, create_engine
from sqlalchemy.orm import relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from activitylog.config import config_from_mappings, load_mappings
from activitylog.database import Base
from activitylog.models.activity import ActivityLog, ActivityLogDetail
from activitylog.models.enums import EventKind
from activitylog.models.events import ChangeEvent
from activitylog.services.batching import BatchingEngine
from activitylog.services.registry import EntityRegistry

T0 = datetime(2026, 1, 5, 10, 0, 0)


# A tiny sales domain standing in for the host application's entities
class Item(Base):
    __tablename__ = "test_items"

    id = Column(Integer, primary_key=True)
    code = Column(String, nullable=False)
    description = Column(String, nullable=True)


class Sale(Base):
    __tablename__ = "test_sales"

    id = Column(Integer, primary_key=True)
    code = Column(String, nullable=False)
    total_usd = Column(Numeric(12, 2, asdecimal=False), nullable=True)

    items = relationship("SaleItem", back_populates="sale")


class SaleItem(Base):
    __tablename__ = "test_sale_items"

    id = Column(Integer, primary_key=True)
    sale_id = Column(Integer, ForeignKey("test_sales.id"), nullable=False)
    item_id = Column(Integer, ForeignKey("test_items.id"), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)

    sale = relationship("Sale", back_populates="items")
    item = relationship("Item")


class User(Base):
    __tablename__ = "test_users"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)


@pytest.fixture
def db_engine():
    """Fresh in-memory database shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def config():
    """Packaged mappings with a 2 second batch window."""
    return config_from_mappings(load_mappings(), batch_window=timedelta(seconds=2))


@pytest.fixture
def batching(db_session, config):
    return BatchingEngine(db_session, config)


@pytest.fixture
def registry(config):
    registry = EntityRegistry(config)
    registry.register_model("Item", Item)
    registry.register_model("Sale", Sale, display_name="Sale")
    registry.register_model(
        "SaleItem",
        SaleItem,
        display_name="Sale item",
        relations={"item": (lambda sale_item: sale_item.item, "Item")}
    )
    registry.register_actor_model(User)
    return registry


@pytest.fixture
def sample_sale(db_session):
    """Sale 42 with one line item pointing at a catalogue item."""
    item = Item(id=1, code="W-1", description="Widget")
    sale = Sale(id=42, code="INV-42", total_usd=100)
    line = SaleItem(id=7, sale=sale, item=item, quantity=2)
    db_session.add_all([item, sale, line])
    db_session.commit()
    return sale


def parent_event(at, kind=EventKind.UPDATED, diff=None, actor="user_1", entity_id=42):
    return ChangeEvent.for_parent(
        kind,
        "Sale",
        entity_id,
        diff=diff if diff is not None else {"old": {"total_usd": 100}, "new": {"total_usd": 120}},
        actor_id=actor,
        timestamp=at,
        display_label=f"INV-{entity_id}",
    )


def child_event(at, kind=EventKind.UPDATED, diff=None, actor="user_1", child_id=7, root_id=42):
    return ChangeEvent.for_child(
        kind,
        "SaleItem",
        child_id,
        root=("Sale", root_id),
        diff=diff if diff is not None else {"old": {"quantity": 1}, "new": {"quantity": 2}},
        actor_id=actor,
        timestamp=at,
    )


def batch_numbers(session, entity_type="Sale", entity_id="42"):
    """Batch numbers of a log's details in insert order."""
    log = session.query(ActivityLog).filter_by(entity_type=entity_type, entity_id=entity_id).one()
    return [
        d.batch_no for d in session.query(ActivityLogDetail).filter_by(
            activity_log_id=log.id
        ).order_by(ActivityLogDetail.id)
    ]
