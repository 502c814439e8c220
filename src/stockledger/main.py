from __future__ import annotations

import logging

from stockledger.application.container import AppContainer, build_container
from stockledger.config import AppPaths, get_app_paths, load_settings
from stockledger.logging_config import setup_logging


log = logging.getLogger(__name__)


def bootstrap(paths: AppPaths | None = None) -> AppContainer:
    """Wire logging, settings and services against the per-user ledger database."""
    paths = paths or get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)

    settings = load_settings()
    container = build_container(paths.db_path, settings)
    log.info("ledger_ready db=%s schema_version=%s", paths.db_path, container.repo.schema_version())
    return container


def main(paths: AppPaths | None = None) -> int:
    container = bootstrap(paths)
    report = container.operations.run_health_check()
    return 0 if report.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
