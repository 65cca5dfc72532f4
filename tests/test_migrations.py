from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

import pharmaflow.models  # noqa: F401
from pharmaflow.db.base import Base


def test_sqlite_upgrade_matches_models(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path / 'ledger.db'}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    project_root = Path(__file__).resolve().parents[1]
    alembic_cfg = Config(str(project_root / "alembic.ini"))

    command.upgrade(alembic_cfg, "head")

    inspector = inspect(create_engine(db_url))
    assert set(inspector.get_table_names()) - {"alembic_version"} == set(Base.metadata.tables)
    for table_name, table in Base.metadata.tables.items():
        columns = {column["name"] for column in inspector.get_columns(table_name)}
        assert columns == set(table.columns.keys()), table_name
    checks = {c["name"] for c in inspector.get_check_constraints("batches")}
    assert {"ck_batches_quantity_non_negative", "ck_batches_status"} <= checks

    command.downgrade(alembic_cfg, "base")
    assert set(inspect(create_engine(db_url)).get_table_names()) <= {"alembic_version"}
