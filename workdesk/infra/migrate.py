from __future__ import annotations

import os
import sys

from alembic import command
from alembic.config import Config

ALEMBIC_CONFIG = os.getenv("ALEMBIC_CONFIG", "alembic.ini")


def run_upgrade(revision: str = "head") -> None:
    command.upgrade(Config(ALEMBIC_CONFIG), revision)


def run_downgrade(revision: str) -> None:
    command.downgrade(Config(ALEMBIC_CONFIG), revision)


if __name__ == "__main__":
    if len(sys.argv) > 2 and sys.argv[1] == "downgrade":
        run_downgrade(sys.argv[2])
    else:
        run_upgrade(sys.argv[1] if len(sys.argv) > 1 else "head")
