import logging
from collections import namedtuple

from time_slots import normalize_time, time_to_minutes, times_overlap

logger = logging.getLogger(__name__)

CacheKey = namedtuple('CacheKey', ['teacher_id', 'day', 'start_time', 'end_time'])


def has_declared_availability(teacher, day, start_time, end_time):
    """True when [start_time, end_time) lies inside one of the teacher's declared slots for that day."""
    if teacher is None:
        return False
    start = time_to_minutes(start_time)
    end = time_to_minutes(end_time)
    for slot in teacher.availability_for(day):
        if start >= time_to_minutes(slot.start_time) and end <= time_to_minutes(slot.end_time):
            return True
    return False


def find_conflicting_blocks(store, teacher_id, day, start_time, end_time, academic_year,
                            exclude_course_id=None):
    """Committed blocks of the teacher, from any course, overlapping the interval on that day."""
    committed = store.get_teacher_blocks(teacher_id, day, academic_year)
    return [
        block for block in committed
        if (exclude_course_id is None or str(block['course_id']) != str(exclude_course_id))
        and times_overlap(block['start_time'], block['end_time'], start_time, end_time)
    ]


def validate_teacher_schedule(store, teacher, day, start_time, end_time, academic_year,
                              exclude_course_id=None):
    """
    Full validation of a proposed teacher booking.

    Combines declared availability with real conflicts against committed blocks.
    Returns {'is_valid': bool, 'errors': [...], 'warnings': [...]}.
    """
    errors = []
    warnings = []

    if not has_declared_availability(teacher, day, start_time, end_time):
        errors.append("Teacher has no declared availability for this time")

    teacher_id = teacher.id if teacher is not None else None
    if teacher_id is not None:
        for block in find_conflicting_blocks(store, teacher_id, day, start_time, end_time,
                                             academic_year, exclude_course_id):
            errors.append(
                f"Already assigned in {block.get('school_name', '')} - {block.get('course_name', '')} "
                f"({normalize_time(block['start_time'])}-{normalize_time(block['end_time'])})"
            )

    return {
        'is_valid': len(errors) == 0,
        'errors': errors,
        'warnings': warnings,
    }


class AvailabilityOracle:
    """
    Answers whether a teacher can take a lesson on a given day and interval.

    One oracle lives for exactly one generation run: the memo cache is keyed by
    (teacher, day, start, end) and is dropped with the oracle, because committed
    blocks may change between runs.
    """

    def __init__(self, teachers, store, academic_year, exclude_course_id=None):
        self.teachers = {t.id: t for t in teachers}
        self.store = store
        self.academic_year = academic_year
        self.exclude_course_id = exclude_course_id
        self._cache = {}
        self.checks = 0
        self.cache_hits = 0

    def is_available(self, teacher_id, day, start_time, end_time, academic_year=None):
        year = self.academic_year if academic_year is None else academic_year
        if year != self.academic_year:
            # Cache only holds answers for the year this run was built for
            return self._check(teacher_id, day, start_time, end_time, year)

        key = CacheKey(teacher_id, day, start_time, end_time)
        if key in self._cache:
            self.cache_hits += 1
            return self._cache[key]

        available = self._check(teacher_id, day, start_time, end_time, year)
        self._cache[key] = available
        return available

    def _check(self, teacher_id, day, start_time, end_time, academic_year):
        self.checks += 1
        validation = validate_teacher_schedule(self.store, self.teachers.get(teacher_id), day, start_time,
                                               end_time, academic_year, self.exclude_course_id)
        if not validation['is_valid']:
            logger.debug(f"Teacher {teacher_id} unavailable on {day} {start_time}-{end_time}: "
                         f"{'; '.join(validation['errors'])}")
        return validation['is_valid']

    @property
    def cache_size(self):
        return len(self._cache)
