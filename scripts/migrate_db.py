"""
Apply or roll back the tradeguard schema with Alembic.

The database URI comes from ``STATE_STORE_URI`` when set, otherwise from
``alembic.ini``.  Run it in deployment pipelines before starting the
settlement worker:

.. code-block:: bash

    STATE_STORE_URI=postgresql+asyncpg://user:pass@db:5432/trading \
        python scripts/migrate_db.py

    # roll back the initial schema
    python scripts/migrate_db.py --downgrade base
"""

from __future__ import annotations

import argparse
import os
import pathlib

from alembic import command
from alembic.config import Config


def alembic_config() -> Config:
    base_dir = pathlib.Path(__file__).resolve().parents[1]
    cfg = Config(str(base_dir / "alembic.ini"))
    cfg.set_main_option("script_location", str(base_dir / "alembic"))
    db_url = os.getenv("STATE_STORE_URI")
    if db_url:
        cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


def main() -> None:
    ap = argparse.ArgumentParser(description="Run tradeguard schema migrations.")
    ap.add_argument("--revision", default="head", help="target revision for upgrade")
    ap.add_argument("--downgrade", metavar="REVISION", help="downgrade to REVISION instead")
    args = ap.parse_args()

    cfg = alembic_config()
    if args.downgrade:
        command.downgrade(cfg, args.downgrade)
    else:
        command.upgrade(cfg, args.revision)


if __name__ == "__main__":
    main()
