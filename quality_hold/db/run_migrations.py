"""
Alembic runner that needs no alembic.ini.

The script location is the migrations package next to this module and the URL
comes from the database settings, so the same entry point works from a checkout
and from an installed wheel.

Usage:
    python -m quality_hold.db.run_migrations upgrade head
    python -m quality_hold.db.run_migrations downgrade -1
    python -m quality_hold.db.run_migrations current
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

from alembic import command
from alembic.config import Config

from quality_hold.db.config import get_settings

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


def alembic_config() -> Config:
    cfg = Config()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    # Offline mode only; env.py builds its own async engine online.
    cfg.set_main_option("sqlalchemy.url", get_settings().sync_database_url)
    return cfg


def _show(cfg: Config, *args: str) -> None:
    if not args:
        raise SystemExit("Usage: show <revision>")
    command.show(cfg, args[0])


_COMMANDS: Dict[str, Callable[..., None]] = {
    "upgrade": lambda cfg, *a: command.upgrade(cfg, *(a or ("head",))),
    "downgrade": lambda cfg, *a: command.downgrade(cfg, *(a or ("-1",))),
    "current": command.current,
    "history": command.history,
    "heads": command.heads,
    "show": _show,
}


# PUBLIC_INTERFACE
def main(argv: Optional[List[str]] = None) -> None:
    """Dispatch `<command> [args...]` to the matching alembic command."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        raise SystemExit(f"Missing command. One of: {', '.join(sorted(_COMMANDS))}")
    name, rest = args[0], args[1:]
    handler = _COMMANDS.get(name)
    if handler is None:
        raise SystemExit(f"Unsupported Alembic command: {name}")
    logger.info("alembic %s %s", name, " ".join(rest))
    handler(alembic_config(), *rest)


# PUBLIC_INTERFACE
def upgrade_head() -> None:
    """Bring the schema to the latest revision. Blocking; call it off the event loop."""
    main(["upgrade", "head"])


if __name__ == "__main__":
    main()
