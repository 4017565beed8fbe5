import os
from datetime import datetime

os.environ.setdefault("LIBRARY_DB", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from campus_library.core.database import Base, get_db
from campus_library.main import app
from campus_library.models import models
from campus_library.models.enums import BookTag, UserType
from campus_library.services.notifications import get_notifier

NOW = datetime(2026, 3, 2, 10, 0)


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, user_id, kind, payload):
        self.sent.append((user_id, kind, payload))

    def of_kind(self, kind):
        return [s for s in self.sent if s[1] == kind]


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(user_type=UserType.STUDENT, **kwargs):
        counter["n"] += 1
        user = models.User(name=kwargs.pop("name", f"Reader {counter['n']}"),
                           email=kwargs.pop("email", f"reader{counter['n']}@uni.example"),
                           user_type=user_type, **kwargs)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def make_book(db):
    def _make(tag=BookTag.YELLOW, copies=1, title="Linear Algebra Done Right", **kwargs):
        book = models.Book(title=title, author=kwargs.pop("author", "S. Axler"), tag=tag,
                           copies_total=copies, copies_available=copies, **kwargs)
        db.add(book)
        db.commit()
        db.refresh(book)
        return book
    return _make


@pytest.fixture
def client(engine, notifier):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        session = Session()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
