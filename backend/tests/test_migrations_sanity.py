from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, inspect, text

from backend.app.db import Base
from backend.app import models  # noqa: F401


ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def _config(database_url: str | None = None) -> Config:
    config = Config(str(ALEMBIC_INI))
    if database_url:
        config.set_main_option("sqlalchemy.url", database_url)
    return config


def _load_script() -> ScriptDirectory:
    return ScriptDirectory.from_config(_config())


def test_alembic_single_head():
    script = _load_script()
    heads = script.get_heads()
    assert len(heads) == 1


def test_alembic_upgrade_creates_metering_tables(tmp_path):
    database_url = f"sqlite:///{tmp_path / 'alembic.db'}"
    command.upgrade(_config(database_url), "head")

    engine = create_engine(database_url, future=True)
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        assert set(Base.metadata.tables) <= tables
        index_names = {ix["name"] for ix in inspector.get_indexes("leak_alerts")}
        assert "uq_leak_alerts_active_apartment_trigger" in index_names
        with engine.connect() as conn:
            revision = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
        assert revision == _load_script().get_current_head()
    finally:
        engine.dispose()


def test_alembic_upgrade_is_idempotent_over_bootstrapped_schema(tmp_path):
    database_url = f"sqlite:///{tmp_path / 'bootstrap.db'}"
    engine = create_engine(database_url, future=True)
    Base.metadata.create_all(bind=engine)
    engine.dispose()

    command.upgrade(_config(database_url), "head")

    engine = create_engine(database_url, future=True)
    try:
        assert "meter_readings" in set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
