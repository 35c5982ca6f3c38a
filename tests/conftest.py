import os

# must be set before app.database is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REALTIME_BACKEND", "memory")

import time
from dataclasses import dataclass
from typing import List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import get_db
from app.main import app
from app.models import connection as _connection, location as _location, waypoint as _waypoint  # noqa: F401
from app.models.base import Base
from app.models.connection import Connection, ConnectionMember, MemberRole, MemberStatus
from app.models.user import User
from app.realtime.sse_pubsub import InMemoryPublisher
from app.routers.deps import get_tracker
from app.services.location_cache import LocationCache
from app.services.location_tracker import LocationTracker

TTL_MS = 120_000


class ManualClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class Group:
    connection: Connection
    owner: User
    members: List[User]

    @property
    def id(self) -> int:
        return self.connection.id


def add_user(db: Session, name: str) -> User:
    user = User(name=name)
    db.add(user)
    db.flush()
    return user


def add_member(db: Session, connection: Connection, user: User, role: str = MemberRole.MEMBER.value) -> ConnectionMember:
    membership = ConnectionMember(
        connection_id=connection.id,
        user_id=user.id,
        role=role,
        status=MemberStatus.ACTIVE.value,
    )
    db.add(membership)
    db.flush()
    return membership


def make_group(db: Session, owner_name: str = "Olivia", member_names=("Mia", "Noah")) -> Group:
    connection = Connection(name=f"{owner_name}'s trip")
    db.add(connection)
    db.flush()

    owner = add_user(db, owner_name)
    add_member(db, connection, owner, MemberRole.OWNER.value)
    members = []
    for name in member_names:
        user = add_user(db, name)
        add_member(db, connection, user)
        members.append(user)
    db.commit()
    return Group(connection=connection, owner=owner, members=members)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def group(db) -> Group:
    return make_group(db)


@pytest.fixture
def clock():
    return ManualClock(start=float(int(time.time())))


@pytest.fixture
def cache(clock):
    return LocationCache(ttl_ms=TTL_MS, clock=clock)


@pytest.fixture
def publisher():
    return InMemoryPublisher()


@pytest.fixture
def tracker(cache, publisher):
    return LocationTracker(cache, publisher, history_length=5)


@pytest.fixture
def client(db, tracker):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_tracker] = lambda: tracker
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
