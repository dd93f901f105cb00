import math

# Curve breakpoints, minutes
MIN_STREAK_MINUTES = 10
BASELINE_MINUTES = 60
PEAK_MINUTES = 240

PEAK_MULTIPLIER = 1.5
SOFT_CAP_BONUS_SCALE = 15


def round_points(value: float) -> float:
    """Round half up to two decimals."""
    return math.floor(value * 100 + 0.5) / 100


def points_for_minutes(duration_minutes: float) -> float:
    """Map a streak duration onto the super-linear points curve.

    - under 10 min: 0 (not a real focus session)
    - 10-60 min: multiplier ramps 0.5x -> 1.0x
    - 60-240 min: multiplier ramps 1.0x -> 1.5x
    - over 240 min: 360 base plus a logarithmic bonus for the excess

    Points per minute grow with duration up to four hours, so one long
    streak always beats several short ones of the same total length
    (60 min -> 60 pts, 2 x 30 min -> 45 pts).
    """
    if duration_minutes < MIN_STREAK_MINUTES:
        return 0.0

    if duration_minutes <= BASELINE_MINUTES:
        multiplier = 0.5 + (duration_minutes / BASELINE_MINUTES) * 0.5
        points = duration_minutes * multiplier
    elif duration_minutes <= PEAK_MINUTES:
        progress = (duration_minutes - BASELINE_MINUTES) / (PEAK_MINUTES - BASELINE_MINUTES)
        multiplier = 1.0 + progress * 0.5
        points = duration_minutes * multiplier
    else:
        base_points = PEAK_MINUTES * PEAK_MULTIPLIER
        excess_minutes = duration_minutes - PEAK_MINUTES
        points = base_points + math.log(excess_minutes + 1) * SOFT_CAP_BONUS_SCALE

    return max(0.0, round_points(points))


def calculate_streak_points(lock_timestamp: int, unlock_timestamp: int) -> float:
    """Points for a LOCK -> UNLOCK interval given as epoch milliseconds."""
    duration_minutes = (unlock_timestamp - lock_timestamp) / 1000 / 60
    return points_for_minutes(duration_minutes)


def format_duration(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds}s"
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
