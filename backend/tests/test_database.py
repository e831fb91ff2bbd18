"""Tests for engine configuration."""

from sqlalchemy import create_engine, inspect, text

from worksage.config import Settings
from worksage.database import Base, engine_options


class TestEngineOptions:
    """Tests for the create_engine arguments built from settings."""

    def test_default_url_names_the_installed_driver(self):
        default_url = Settings.model_fields["database_url"].default
        assert default_url.startswith("postgresql+psycopg2://")

    def test_postgres_options(self):
        options = engine_options("postgresql+psycopg2://u:p@localhost/worksage", 5)

        assert options["isolation_level"] == "READ COMMITTED"
        assert options["pool_timeout"] == 5
        assert options["connect_args"]["connect_timeout"] == 5
        assert "lock_timeout=5000" in options["connect_args"]["options"]
        assert "statement_timeout=5000" in options["connect_args"]["options"]

    def test_in_memory_sqlite_engine_builds(self):
        engine = create_engine("sqlite:///:memory:", **engine_options("sqlite:///:memory:", 5))
        try:
            with engine.connect() as connection:
                assert connection.execute(text("SELECT 1")).scalar() == 1
            Base.metadata.create_all(engine)
            assert "users" in inspect(engine).get_table_names()
        finally:
            engine.dispose()

    def test_sqlite_has_no_pool_sizing(self):
        options = engine_options("sqlite:///worksage.db", 3)

        assert "pool_size" not in options
        assert "isolation_level" not in options
        assert options["connect_args"] == {"check_same_thread": False, "timeout": 3}
