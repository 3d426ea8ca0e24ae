"""Engine options per backend."""

from adbox import database
from adbox.config import Settings


def test_sqlite_shares_connection_across_threads():
    options = database.engine_options("sqlite:///./adbox.db")
    assert options["connect_args"] == {"check_same_thread": False}
    assert "pool_size" not in options


def test_postgres_pool_comes_from_settings():
    config = Settings(db_pool_size=2, db_max_overflow=3, db_pool_recycle_seconds=60)
    options = database.engine_options("postgresql://u:p@db/adbox", config)

    assert options["pool_pre_ping"] is True
    assert (options["pool_size"], options["max_overflow"], options["pool_recycle"]) == (2, 3, 60)
    assert "connect_args" not in options


def test_mask_url_hides_password():
    assert database._mask_url("postgresql://adbox:s3cret@db:5432/adbox") == (
        "postgresql://adbox:****@db:5432/adbox"
    )
    assert database._mask_url("sqlite:///./adbox.db") == "sqlite:///./adbox.db"
