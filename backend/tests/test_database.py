import pytest
from sqlalchemy import text

from authcore.core.database import Database


def test_engine_requires_init():
    db = Database()
    assert not db.is_initialized
    assert db.pool_status() == {"initialized": False}
    with pytest.raises(RuntimeError):
        db.engine
    with pytest.raises(RuntimeError):
        db.new_session()


def test_init_is_idempotent_and_dispose_resets():
    db = Database()
    engine = db.init("sqlite:///:memory:")
    assert db.init("sqlite:///:memory:") is engine
    assert db.pool_status()["initialized"] is True

    db.dispose()
    assert not db.is_initialized
    db.dispose()


def test_session_block_rolls_back_on_error():
    db = Database()
    db.init("sqlite:///:memory:")
    try:
        with db.session() as session:
            session.execute(text("CREATE TABLE t (x INTEGER)"))
            session.commit()

        with pytest.raises(ZeroDivisionError):
            with db.session() as session:
                session.execute(text("INSERT INTO t VALUES (1)"))
                1 / 0

        with db.session() as session:
            assert session.execute(text("SELECT COUNT(*) FROM t")).scalar() == 0
    finally:
        db.dispose()


def test_sqlite_foreign_keys_enabled(database):
    with database.session() as session:
        assert session.execute(text("PRAGMA foreign_keys")).scalar() == 1
