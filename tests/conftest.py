from pathlib import Path

import pytest

from finance_tracker import create_app


@pytest.fixture()
def app(tmp_path: Path):
    db_path = tmp_path / "test.sqlite"
    app = create_app({"TESTING": True, "SECRET_KEY": "test", "DATABASE": str(db_path)})

    with app.app_context():
        app.init_db()

    yield app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def db(app):
    with app.app_context():
        yield app.get_db()


@pytest.fixture()
def user_id(db):
    db.execute("INSERT INTO users (username, password_hash) VALUES (?, ?)", ("alice", "x"))
    db.commit()
    return db.execute("SELECT id FROM users WHERE username = ?", ("alice",)).fetchone()["id"]
