"""
Configuration routes for Catalog Ingest Service.
"""

from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError

from catalog_ingest.config import ConfigManager, IngestConfig
from catalog_ingest.db.database import get_db_session
from catalog_ingest.web.routes.api import check_internal_secret

config_bp = Blueprint('config', __name__, url_prefix='/api')

EDITABLE_FIELDS = ('books_max', 'authors_max', 'subjects', 'batch_size', 'fresh_days')


def _settings_to_dict(config: IngestConfig) -> dict:
    return {
        'books_max': config.books_max,
        'authors_max': config.authors_max,
        'subjects': config.subjects,
        'batch_size': config.batch_size,
        'fresh_days': config.fresh_days,
        'rps': config.rps,
        'max_retries': config.max_retries,
        'ingest_interval_minutes': config.ingest_interval_minutes,
        'run_timeout_minutes': config.run_timeout_minutes,
    }


@config_bp.route('/config', methods=['GET'])
def get_config():
    """Effective ingestion settings."""
    with get_db_session() as session:
        config_manager = ConfigManager(db_session=session, env_config=current_app.config['INGEST_CONFIG'])
        current_config = config_manager.get_config()

    return jsonify(_settings_to_dict(current_config))


@config_bp.route('/config', methods=['PUT'])
def update_config():
    """Override ingestion targets; applies to the next run."""
    if not check_internal_secret():
        return jsonify({'error': 'invalid internal secret'}), 401

    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({'error': 'expected a JSON object'}), 400

    unknown = sorted(set(body) - set(EDITABLE_FIELDS))
    if unknown:
        return jsonify({'error': f"unknown settings: {', '.join(unknown)}"}), 400

    with get_db_session() as session:
        config_manager = ConfigManager(db_session=session, env_config=current_app.config['INGEST_CONFIG'])
        current_config = config_manager.get_config()

        try:
            updated = IngestConfig.model_validate({**current_config.model_dump(), **body})
        except ValidationError as e:
            return jsonify({'error': 'invalid settings', 'details': e.errors(include_url=False, include_context=False)}), 400

        config_manager.save_config(updated)

    return jsonify(_settings_to_dict(updated))
