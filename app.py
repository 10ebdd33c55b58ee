import logging

from flask import Flask, jsonify

from DatabaseConfig import BlockDataStore, check_database_health, get_engine
from deployment_config import DeploymentConfig
from document_api import register_document_api
from concurrency_manager import export_slots
from enhanced_error_handler import error_handler

logger = logging.getLogger(__name__)


def create_app(config=None, store=None):
    """
    Build the Flask application
    config overrides DeploymentConfig values (e.g. DATABASE_URL, OVERLAY_DEBOUNCE_SECONDS)
    """
    DeploymentConfig.configure_logging()

    app = Flask(__name__)
    app.secret_key = DeploymentConfig.SECRET_KEY
    app.config['OVERLAY_DEBOUNCE_SECONDS'] = DeploymentConfig.OVERLAY_DEBOUNCE_SECONDS
    app.config['FETCH_WORKERS'] = DeploymentConfig.FETCH_WORKERS
    app.config['FETCH_TIMEOUT_SECONDS'] = DeploymentConfig.FETCH_TIMEOUT_SECONDS
    app.config['DATABASE_URL'] = DeploymentConfig.DATABASE_URL
    if config:
        app.config.update(config)

    for problem in DeploymentConfig.validate_config():
        logger.warning(f"Configuration: {problem}")

    if store is None:
        store = BlockDataStore(get_engine(app.config['DATABASE_URL']))
    service = register_document_api(app, store)

    @app.route('/health')
    def health():
        return jsonify({
            'database': check_database_health(service.store),
            'errors': error_handler.get_error_stats(),
            'exports': export_slots.get_status(),
        })

    return app


if __name__ == '__main__':
    app = create_app()
    app.run(debug=DeploymentConfig.DEBUG, host=DeploymentConfig.HOST, port=DeploymentConfig.PORT)
