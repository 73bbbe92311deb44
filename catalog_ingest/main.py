"""
Main entry point for Catalog Ingest Service.

Starts the Flask web server and the ingestion scheduler.
"""

import os
import atexit
from typing import Optional

from flask import Flask

from catalog_ingest.config import IngestConfig, get_config_from_env
from catalog_ingest.db.database import init_db, close_db
from catalog_ingest.db.models import utcnow
from catalog_ingest.jobs import start_scheduler, shutdown_scheduler
from catalog_ingest.utils.logging import get_logger, setup_logging, init_db_logging

logger = get_logger(__name__)

__version__ = "0.1.0"


def create_app(config: Optional[IngestConfig] = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config: Configuration to use, loaded from the environment if omitted

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)

    app.config['INGEST_CONFIG'] = config or get_config_from_env()

    # Register blueprints
    from catalog_ingest.web.routes.api import api_bp
    from catalog_ingest.web.routes.catalog import catalog_bp
    from catalog_ingest.web.routes.config import config_bp

    app.register_blueprint(api_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(config_bp)

    # Health check
    @app.route('/health')
    def health():
        return {'status': 'ok', 'timestamp': utcnow().isoformat()}

    return app


def main():
    """Main entry point."""
    # Load configuration
    config = get_config_from_env()

    # Setup logging
    setup_logging(config.log_level)

    config.validate_for_startup()

    # Initialize database
    init_db(config.database_url)

    # Initialize database logging (must be after init_db)
    init_db_logging()

    logger.info(
        "Starting Catalog Ingest Service",
        version=__version__,
        ingest_enabled=config.ingest_enabled,
        ingest_interval=config.ingest_interval_minutes,
    )

    # Create Flask app
    app = create_app(config)

    # Start scheduler; periodic runs only when ingestion is enabled
    start_scheduler(
        interval_minutes=config.ingest_interval_minutes if config.ingest_enabled else 0,
        timeout_minutes=config.run_timeout_minutes,
    )

    # Register shutdown handler
    atexit.register(shutdown_scheduler)
    atexit.register(close_db)

    # Get port from environment
    port = int(os.getenv("PORT", "8080"))

    # Run Flask app with waitress
    from waitress import serve
    serve(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
