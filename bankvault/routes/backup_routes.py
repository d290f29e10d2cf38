"""
Backup routes - statistics, history, manual backup, restore, configuration
and archive download.
"""

import logging

from flask import Blueprint, Response, current_app, jsonify, request
from flask_login import login_required

from bankvault.backup.errors import BackupError, InvalidConfigError


logger = logging.getLogger(__name__)

bp = Blueprint('backup', __name__, url_prefix='/api/backup')

# Request keys accepted by PUT /config, mapped to BackupConfig fields
CONFIG_KEY_ALIASES = {
    'frequency': 'frequency',
    'retentionDays': 'retention_days',
    'retention_days': 'retention_days',
    'includeFiles': 'include_auxiliary_files',
    'include_files': 'include_auxiliary_files',
    'include_auxiliary_files': 'include_auxiliary_files',
    'compression': 'compress',
    'compress': 'compress',
}


def get_backup_service():
    return current_app.extensions['backup_service']


def _error_response(summary, error):
    return jsonify({'error': summary, 'details': str(error)}), error.status_code


def _translate_config_keys(data):
    """
    Map request keys onto BackupConfig field names.

    Raises:
        InvalidConfigError: If the body is not an object or has unknown keys
    """
    if not isinstance(data, dict):
        raise InvalidConfigError('Request body must be a JSON object')

    unknown = sorted(key for key in data if key not in CONFIG_KEY_ALIASES)
    if unknown:
        raise InvalidConfigError(f"Unknown configuration fields: {', '.join(unknown)}")

    return {CONFIG_KEY_ALIASES[key]: value for key, value in data.items()}


@bp.route('/stats', methods=['GET'])
@login_required
def get_stats():
    """
    Get backup statistics and the current configuration.

    Returns:
        JSON with counts, total size, last and next backup
    """
    return jsonify(get_backup_service().get_stats())


@bp.route('/history', methods=['GET'])
@login_required
def get_history():
    """
    Get the backup history ledger, most recent first.

    Returns:
        JSON array of backup records
    """
    return jsonify([record.to_dict() for record in get_backup_service().get_history()])


@bp.route('/create', methods=['POST'])
@login_required
def create_backup():
    """
    Run a manual backup synchronously.

    Returns:
        JSON with the new backup record, 409 if a backup is already running
    """
    try:
        record = get_backup_service().create_backup('manual')
    except BackupError as e:
        logger.error(f"Manual backup failed: {e}")
        return _error_response('Failed to create backup', e)

    return jsonify({
        'message': 'Backup created successfully',
        'backup': record.to_dict()
    })


@bp.route('/restore/<backup_id>', methods=['POST'])
@login_required
def restore_backup(backup_id):
    """
    Restore the live store from a successful backup.

    Args:
        backup_id: Backup record id

    Returns:
        JSON confirmation, 404 for unknown ids, 400 for failed backups
    """
    try:
        get_backup_service().restore(backup_id)
    except BackupError as e:
        logger.error(f"Restore of {backup_id} failed: {e}")
        return _error_response('Failed to restore backup', e)

    return jsonify({
        'message': 'Backup restored successfully',
        'backupId': backup_id
    })


@bp.route('/config', methods=['PUT'])
@login_required
def update_config():
    """
    Update the backup configuration.

    Request body (all optional, camelCase or snake_case):
        - frequency: daily, weekly or monthly
        - retentionDays: 1 to 365
        - includeFiles: Include auxiliary directories
        - compression: Compress archives

    Returns:
        JSON with the applied configuration
    """
    try:
        changes = _translate_config_keys(request.get_json(silent=True))
        config = get_backup_service().update_config(changes)
    except BackupError as e:
        return _error_response('Failed to update backup configuration', e)

    return jsonify({
        'message': 'Backup configuration updated successfully',
        'config': config.to_dict()
    })


@bp.route('/download/<backup_id>', methods=['GET'])
@login_required
def download_backup(backup_id):
    """
    Stream a backup archive as an attachment.

    Args:
        backup_id: Backup record id
    """
    try:
        filename, chunks = get_backup_service().open_download(backup_id)
    except BackupError as e:
        return _error_response('Failed to download backup', e)

    return Response(
        chunks,
        mimetype='application/octet-stream',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'}
    )


@bp.route('/health', methods=['GET'])
def backup_health():
    """
    Backup health check (no authentication).

    Returns:
        JSON with healthy flag, message, last and next backup
    """
    return jsonify(get_backup_service().get_health())
