from __future__ import annotations

import logging

from shopdesk.application.container import AppContainer, build_container
from shopdesk.config import get_app_paths, load_settings
from shopdesk.domain.errors import FxUnavailableError
from shopdesk.logging_config import setup_logging

log = logging.getLogger(__name__)


def bootstrap(app_name: str = "ShopDesk") -> AppContainer:
    paths = get_app_paths(app_name)
    setup_logging(paths.logs_dir, level=logging.INFO)

    app = build_container(paths.db_path, load_settings())
    log.info("app_started db=%s", paths.db_path)

    # first run on a new till: try to fetch a rate so sales can start
    if app.fx.get_latest_rate() is None:
        try:
            app.fx.sync_from_remote()
        except FxUnavailableError as e:
            log.warning("fx_initial_sync_failed error=%s", e)
    return app


def main() -> None:
    app = bootstrap()
    latest = app.fx.get_latest_rate()
    print(f"Database ready. Current rate: {latest.rate if latest else 'not set'}")
    app.session.close()


if __name__ == "__main__":
    main()
