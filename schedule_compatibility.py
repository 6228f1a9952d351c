"""
Detects saved schedules made obsolete by a later change to the school's jornada.

Every saved schedule stores a JSON snapshot of the jornada it was built for.
Comparing it with the current configuration tells the coordinator whether to
keep the schedule, shift its times, or generate a new one.
"""

import json
import logging

from time_slots import calculate_blocks_for_config, normalize_time

logger = logging.getLogger(__name__)

RECOMMENDATION_MESSAGES = {
    'migrate': "Recommendation: migrate automatically by adjusting block times",
    'recreate': "Recommendation: recreate the schedule from scratch",
}


def create_config_snapshot(start_time, end_time, block_duration, academic_level):
    """Serializes the jornada a schedule was built for."""
    return json.dumps({
        'start_time': normalize_time(start_time),
        'end_time': normalize_time(end_time),
        'block_duration': int(block_duration),
        'academic_level': academic_level or '',
    })


def parse_config_snapshot(snapshot_json):
    """Returns the snapshot as a dict, or None when absent or unreadable."""
    if not snapshot_json:
        return None
    if isinstance(snapshot_json, bytes):
        snapshot_json = snapshot_json.decode('utf-8')
    try:
        data = json.loads(snapshot_json) if isinstance(snapshot_json, str) else dict(snapshot_json)
    except (json.JSONDecodeError, TypeError, ValueError):
        logger.warning(f"Unreadable config snapshot: {snapshot_json!r}")
        return None
    return {
        'start_time': data.get('start_time') or data.get('startTime'),
        'end_time': data.get('end_time') or data.get('endTime'),
        'block_duration': data.get('block_duration') or data.get('blockDuration'),
        'academic_level': data.get('academic_level') or data.get('academicLevel') or '',
    }


def check_schedule_compatibility(snapshot, current):
    """
    Compares a stored snapshot with the current jornada.

    Both arguments are dicts shaped like parse_config_snapshot's output
    (snapshot may be None). Level or block-duration changes cannot be migrated
    automatically; up to two start/end changes can.
    """
    if not snapshot:
        return {
            'is_compatible': False,
            'issues': ["Schedule was created without configuration information"],
            'can_auto_migrate': False,
            'recommendation': 'recreate',
        }

    issues = []
    can_auto_migrate = True

    if (snapshot.get('academic_level') or '') != (current.get('academic_level') or ''):
        issues.append(
            f"Academic level changed from {snapshot.get('academic_level')} to {current.get('academic_level')}")
        can_auto_migrate = False

    if int(snapshot['block_duration']) != int(current['block_duration']):
        issues.append(
            f"Block duration changed from {snapshot['block_duration']} to {current['block_duration']} minutes")
        can_auto_migrate = False

    if normalize_time(snapshot['start_time']) != normalize_time(current['start_time']):
        issues.append(f"Start time changed from {snapshot['start_time']} to {current['start_time']}")

    if normalize_time(snapshot['end_time']) != normalize_time(current['end_time']):
        issues.append(f"End time changed from {snapshot['end_time']} to {current['end_time']}")

    if not issues:
        return {'is_compatible': True, 'issues': [], 'can_auto_migrate': True, 'recommendation': 'keep'}

    recommendation = 'migrate' if can_auto_migrate and len(issues) <= 2 else 'recreate'
    return {
        'is_compatible': False,
        'issues': issues,
        'can_auto_migrate': can_auto_migrate,
        'recommendation': recommendation,
    }


def is_block_in_range(block_number, start_time, end_time, block_duration):
    max_blocks = calculate_blocks_for_config(start_time, end_time, block_duration)
    return 0 < block_number <= max_blocks


def get_compatibility_message(result):
    if result['is_compatible']:
        return "The schedule is compatible with the current configuration"

    lines = ["This schedule has compatibility issues:", ""]
    lines.extend(f"- {issue}" for issue in result['issues'])
    lines.append("")
    lines.append(RECOMMENDATION_MESSAGES[result['recommendation']])
    return "\n".join(lines)
