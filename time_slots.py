"""
Time slot generation for a school's jornada.

Bookable slots for the generator come from `generate_time_slots`; the grid shown
to coordinators, which also lists recesses and lunch, comes from
`generate_time_slots_with_breaks`.
"""

import logging
from datetime import datetime, time, timedelta

from data_models import TimeSlot
from db_config import GenerationDefaults

logger = logging.getLogger(__name__)


def time_to_minutes(value):
    """Converts 'HH:MM' (or a time / timedelta from a MySQL TIME column) to minutes since midnight."""
    if isinstance(value, timedelta):
        return int(value.total_seconds() // 60)
    if isinstance(value, (time, datetime)):
        return value.hour * 60 + value.minute
    parts = str(value).strip().split(':')
    if len(parts) < 2:
        raise ValueError(f"Invalid time value: {value!r}")
    return int(parts[0]) * 60 + int(parts[1])


def minutes_to_time(minutes):
    """Converts minutes since midnight back to 'HH:MM'."""
    hours, mins = divmod(int(minutes), 60)
    return f"{hours:02d}:{mins:02d}"


def normalize_time(value):
    return minutes_to_time(time_to_minutes(value))


def times_overlap(start1, end1, start2, end2):
    """True when [start1, end1) and [start2, end2) share at least one minute."""
    return (time_to_minutes(start1) < time_to_minutes(end2)
            and time_to_minutes(start2) < time_to_minutes(end1))


def calculate_duration(start_time, end_time):
    return time_to_minutes(end_time) - time_to_minutes(start_time)


def generate_time_slots(config, day):
    """
    Builds the ordered bookable slots of one weekday from a SchoolDayConfig.

    Walks from start_time to end_time in steps of block_duration + break_duration.
    A block that would touch the day's lunch window is never emitted; the walk
    jumps to the end of lunch instead. Returns an empty list when the jornada is
    empty or entirely covered by lunch.
    """
    slots = []
    current = time_to_minutes(config.start_time)
    end = time_to_minutes(config.end_time)
    block = int(config.block_duration)
    step = block + int(config.break_duration or 0)

    if block <= 0 or current >= end:
        return slots

    lunch = config.lunch_window_for(day)
    lunch_start = lunch_end = None
    if lunch is not None:
        lunch_start = time_to_minutes(lunch.start)
        lunch_end = time_to_minutes(lunch.end)
        if lunch_start >= lunch_end:
            lunch_start = lunch_end = None

    while current < end:
        block_end = current + block

        if lunch_start is not None and current < lunch_end and lunch_start < block_end:
            # Never emit a block truncated by lunch
            current = lunch_end
            continue

        if block_end > end:
            break

        slots.append(TimeSlot(
            start_time=minutes_to_time(current),
            end_time=minutes_to_time(block_end),
            duration_minutes=block,
        ))

        current += step
        if lunch_start is not None and lunch_start < current < lunch_end:
            current = lunch_end

    return slots


def generate_week_slots(config, days=None):
    """Returns {day: [TimeSlot, ...]} for every requested weekday."""
    days = days or GenerationDefaults.DAYS
    week = {}
    for day in days:
        week[day] = generate_time_slots(config, day)
        logger.debug(f"{day}: {len(week[day])} slots available")
    return week


def generate_time_slots_with_breaks(level_config):
    """
    Builds the display lattice of a jornada, listing blocks and explicit breaks.

    level_config is a dict with start_time, end_time, block_duration and
    breaks = [{'after_block': n, 'duration': minutes, 'name': label}, ...].
    Blocks are numbered from 1. Breaks are only ever shown, never booked.
    """
    slots = []
    current = time_to_minutes(level_config['start_time'])
    end = time_to_minutes(level_config['end_time'])
    block = int(level_config['block_duration'])
    if block <= 0:
        return slots

    break_map = {int(b['after_block']): b for b in level_config.get('breaks') or []}
    block_number = 1

    while current + block <= end:
        slots.append({
            'start_time': minutes_to_time(current),
            'end_time': minutes_to_time(current + block),
            'type': 'block',
            'block_number': block_number,
        })
        current += block

        break_after = break_map.get(block_number)
        if break_after and current < end:
            duration = int(break_after['duration'])
            slots.append({
                'start_time': minutes_to_time(current),
                'end_time': minutes_to_time(current + duration),
                'type': 'break',
                'break_name': break_after.get('name', 'Break'),
            })
            current += duration

        block_number += 1
        if block_number > GenerationDefaults.MAX_BLOCKS_PER_LATTICE:
            logger.warning("Too many blocks generated for jornada, stopping lattice")
            break

    return slots


def calculate_blocks_for_config(start_time, end_time, block_duration):
    """Number of whole blocks that fit between start_time and end_time."""
    if int(block_duration) <= 0:
        return 0
    total = calculate_duration(start_time, end_time)
    return max(0, total // int(block_duration))
