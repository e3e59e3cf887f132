"""Saved-stories library."""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from storygate.core.identity import require_user_key
from storygate.database import create_engine_for, get_db, init_db
from storygate.main import app

client = TestClient(app)

PAGES = [{"text": "Once upon a time...", "image": None}, {"text": "The end."}]


@pytest.fixture(autouse=True)
def story_db():
    engine = create_engine_for("sqlite://")
    init_db(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[require_user_key] = lambda: "user-1"
    yield
    app.dependency_overrides.clear()
    engine.dispose()


def test_save_story_defaults_title_from_child_name():
    response = client.post("/stories", json={"childName": "Mia", "age": 5, "pages": PAGES})
    assert response.status_code == 200
    story = response.json()["story"]
    assert story["title"] == "Story for Mia"
    assert story["age"] == "5"
    assert story["pages"] == PAGES
    assert story["id"]


def test_save_story_without_name_is_bedtime_story():
    response = client.post("/stories", json={"pages": PAGES, "coverImageUrl": "https://images.example.com/c.png"})
    story = response.json()["story"]
    assert story["title"] == "Bedtime story"
    assert story["coverImageUrl"] == "https://images.example.com/c.png"


@pytest.mark.parametrize("body", [{}, {"pages": []}, {"pages": "not a list"}])
def test_story_without_pages_is_400(body):
    response = client.post("/stories", json=body)
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_request"


def test_list_returns_only_callers_stories_newest_first():
    client.post("/stories", json={"title": "First", "pages": PAGES})
    client.post("/stories", json={"title": "Second", "pages": PAGES})
    app.dependency_overrides[require_user_key] = lambda: "user-2"
    client.post("/stories", json={"title": "Someone else's", "pages": PAGES})
    app.dependency_overrides[require_user_key] = lambda: "user-1"

    response = client.get("/stories")
    assert response.status_code == 200
    titles = [s["title"] for s in response.json()["stories"]]
    assert titles == ["Second", "First"]


def test_stories_require_authentication():
    del app.dependency_overrides[require_user_key]
    assert client.get("/stories").status_code == 401
