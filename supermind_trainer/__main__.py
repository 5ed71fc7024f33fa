from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

LOG_LEVEL_ENV = "SUPERMIND_LOG_LEVEL"


def _ensure_repo_root_on_path() -> None:
    """Ensure the repository root (parent of this package) is on ``sys.path``.

    When this module is executed as a script
    (``python supermind_trainer/__main__.py``) the package is not importable
    by name, so the parent directory of the package is inserted first.
    """
    repo_root_str = str(Path(__file__).resolve().parent.parent)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


def configure_logging(level: str | None = None) -> int:
    """Configure root logging from ``level`` or ``$SUPERMIND_LOG_LEVEL``.

    Unknown level names fall back to WARNING. Returns the numeric level used.
    """
    name = (level or os.environ.get(LOG_LEVEL_ENV) or "WARNING").strip().upper()
    numeric = logging.getLevelName(name)
    if not isinstance(numeric, int):
        numeric = logging.WARNING
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return numeric


def main() -> int:
    """Entry point for running the trainer from the command line."""
    configure_logging()
    if __package__:
        from .app import run
    else:
        _ensure_repo_root_on_path()
        from supermind_trainer.app import run
    return run()


if __name__ == "__main__":
    raise SystemExit(main())
