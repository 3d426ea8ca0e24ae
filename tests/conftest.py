"""Shared fixtures: in-memory store, fake gateway, isolated registries."""

from typing import Dict

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from adbox.models import ads_models, inbox_models, tenant_models  # noqa: F401
from adbox.models.tenant_models import Page, Tenant
from adbox.store.repository import Store
from adbox.sync.events import InProcessEventRegistry
from factories import FakeGateway


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def store(engine) -> Store:
    return Store(engine)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def events() -> InProcessEventRegistry:
    return InProcessEventRegistry("test")


@pytest.fixture
def received(events) -> Dict[str, list]:
    """Events published on the test registry, grouped by topic key."""
    inbox: Dict[str, list] = {}
    original_publish = events.publish

    def publish(topic_key, event):
        inbox.setdefault(topic_key, []).append(event)
        return original_publish(topic_key, event)

    events.publish = publish  # type: ignore[method-assign]
    return inbox


@pytest.fixture
def tenant(store) -> Tenant:
    store.add(Tenant(id="t1", name="Shop", access_token="user-token"))
    store.add(Page(id="p1", tenant_id="t1", name="Shop Page", access_token="page-token"))
    return store.find_by_id(Tenant, "t1")
