"""
Repository routes - enrolled and known repository sets.
"""

from flask import Blueprint, jsonify, request, current_app

from ghbackup import get_registry
from ghbackup.registry import RegistryError


bp = Blueprint('repos', __name__)


def _repository_name():
    return (request.values.get('name') or '').strip()


@bp.errorhandler(RegistryError)
def handle_registry_error(error):
    current_app.logger.error(f"Registry error: {error}")
    return jsonify({'error': str(error)}), 500


@bp.route('/active', methods=['GET'])
def list_active():
    """
    Get the repositories that are backed up every cycle.

    Returns:
        JSON array of repository refs
    """
    return jsonify(sorted(get_registry().list_enrolled()))


@bp.route('/activate', methods=['GET', 'POST'])
def activate():
    """
    Enroll a repository for backup.

    Parameters:
        - name: Repository clone URL (required)

    Returns:
        204 on success
    """
    name = _repository_name()
    if not name:
        return jsonify({'error': 'name query parameter missing'}), 400

    get_registry().add_enrolled(name)
    current_app.logger.info(f"Enrolled {name}")
    return '', 204


@bp.route('/deactivate', methods=['GET', 'POST'])
def deactivate():
    """
    Stop backing up a repository. Removing a repository that is not enrolled is a no-op.

    Parameters:
        - name: Repository clone URL (required)

    Returns:
        204 on success
    """
    name = _repository_name()
    if not name:
        return jsonify({'error': 'name query parameter missing'}), 400

    get_registry().remove_enrolled(name)
    current_app.logger.info(f"Unenrolled {name}")
    return '', 204


@bp.route('/repos', methods=['GET'])
def list_known():
    """
    Get the repositories found by discovery.

    Returns:
        JSON array of repository refs
    """
    return jsonify(sorted(get_registry().list_known()))
