import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import CategoryType
from repository import InMemoryRepository, SQLRepository


@pytest.fixture(params=["memory", "sql"])
def repo(request):
    if request.param == "memory":
        yield InMemoryRepository()
        return
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine, expire_on_commit=False) as session:
        yield SQLRepository(session)
    engine.dispose()


@pytest.fixture
def user(repo):
    return repo.create_user(
        username="alice",
        password_hash="x",
        email="alice@example.com",
        full_name="Alice Example",
    )


@pytest.fixture
def food(repo):
    return repo.create_category(name="Food", type=CategoryType.variable, color="#4CAF50")
