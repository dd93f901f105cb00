from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
from pydantic import ValidationError

from stifle.schemas import SyncRequest
from stifle.services.events import canonical_log
from stifle.services.events.sync import process_sync


events = Blueprint('events', __name__)


@events.route('/sync', methods=['POST'])
@login_required
def sync_events():
    """Accept pending events from a device and answer with confirmations.

    Safe to call any number of times with the same batch: events are
    deduplicated by their device-generated id.
    """
    data = request.get_json(silent=True)
    if data is None:
        return jsonify({'error': 'JSON body is required'}), 400
    try:
        body = SyncRequest.model_validate(data)
    except ValidationError as exc:
        return jsonify({'error': 'Invalid sync request', 'details': exc.errors(include_url=False, include_context=False)}), 400

    try:
        response = process_sync(current_user, body)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400

    return jsonify(response.model_dump(by_alias=True))


@events.route('/current', methods=['GET'])
@login_required
def current_streak():
    return jsonify(canonical_log.current_streak(current_user.id))
