from datetime import date, datetime, timezone

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from stifle.services.scoring.weekly import get_weekly_score, update_weekly_score
from stifle.services.scoring.weeks import week_start_for_timezone


scores = Blueprint('scores', __name__)


def _parse_week_start(value):
    """Return the Monday of the week holding `value` (YYYY-MM-DD) or of today."""
    if not value:
        return week_start_for_timezone(datetime.now(timezone.utc), current_user.timezone)
    try:
        day = date.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    return date.fromordinal(day.toordinal() - day.weekday())


@scores.route('/weekly', methods=['GET'])
@login_required
def weekly_score():
    week_start = _parse_week_start(request.args.get('week_start'))
    if week_start is None:
        return jsonify({'error': 'week_start must be YYYY-MM-DD'}), 400

    row = get_weekly_score(current_user, week_start)
    if row is None:
        # Nothing scored yet for this week
        return jsonify({
            'user_id': current_user.id,
            'week_start': week_start.isoformat(),
            'total_points': 0.0,
            'streak_count': 0,
            'longest_streak_seconds': 0,
            'calculated_at': None,
        })
    return jsonify(row.to_dict())


@scores.route('/recalculate', methods=['POST'])
@login_required
def recalculate_score():
    data = request.get_json(silent=True) or {}
    week_start = _parse_week_start(data.get('week_start'))
    if week_start is None:
        return jsonify({'error': 'week_start must be YYYY-MM-DD'}), 400
    row = update_weekly_score(current_user, week_start)
    return jsonify(row.to_dict())
