from availability import (AvailabilityOracle, CacheKey, find_conflicting_blocks, has_declared_availability,
                          validate_teacher_schedule)
from data_models import AvailabilitySlot, ScheduleBlock


def _commit(store, course_id, teacher_id, day='Monday', start='08:00', end='09:00', year=2025):
    block = ScheduleBlock(day=day, start_time=start, end_time=end, subject_id='MATH',
                          teacher_id=teacher_id, course_id=course_id)
    store.save_course_schedule(course_id, year, [block])


def test_declared_availability_must_contain_interval(make_teacher):
    teacher = make_teacher('T1', 'Ana', ['MATH'], availability=[AvailabilitySlot('Monday', '08:00', '10:00')])
    assert has_declared_availability(teacher, 'Monday', '08:00', '09:00')
    assert has_declared_availability(teacher, 'monday', '09:00', '10:00')
    assert not has_declared_availability(teacher, 'Monday', '09:30', '10:30')
    assert not has_declared_availability(teacher, 'Tuesday', '08:00', '09:00')


def test_teacher_without_availability_is_unavailable(store, make_teacher):
    teacher = make_teacher('T1', 'Ana', ['MATH'], availability=[])
    oracle = AvailabilityOracle([teacher], store, 2025)
    assert oracle.is_available('T1', 'Monday', '08:00', '09:00') is False


def test_unknown_teacher_is_unavailable(store):
    oracle = AvailabilityOracle([], store, 2025)
    assert oracle.is_available('T404', 'Monday', '08:00', '09:00') is False


def test_oracle_memoizes_by_teacher_day_and_interval(store, make_teacher):
    oracle = AvailabilityOracle([make_teacher('T1', 'Ana', ['MATH'])], store, 2025)

    assert oracle.is_available('T1', 'Monday', '08:00', '09:00') is True
    assert oracle.is_available('T1', 'Monday', '08:00', '09:00') is True
    assert oracle.checks == 1
    assert oracle.cache_hits == 1

    oracle.is_available('T1', 'Monday', '09:00', '10:00')
    assert oracle.checks == 2
    assert oracle.cache_size == 2
    assert CacheKey('T1', 'Monday', '08:00', '09:00') in oracle._cache


def test_other_academic_year_bypasses_cache(store, make_teacher):
    oracle = AvailabilityOracle([make_teacher('T1', 'Ana', ['MATH'])], store, 2025)
    oracle.is_available('T1', 'Monday', '08:00', '09:00')
    oracle.is_available('T1', 'Monday', '08:00', '09:00', academic_year=2026)
    assert oracle.checks == 2
    assert oracle.cache_hits == 0
    assert oracle.cache_size == 1


def test_committed_block_in_other_course_is_a_conflict(store, make_teacher):
    _commit(store, 'C2', 'T1')
    oracle = AvailabilityOracle([make_teacher('T1', 'Ana', ['MATH'])], store, 2025, exclude_course_id='C1')

    assert oracle.is_available('T1', 'Monday', '08:30', '09:30') is False
    assert oracle.is_available('T1', 'Monday', '09:00', '10:00') is True
    assert oracle.is_available('T1', 'Tuesday', '08:00', '09:00') is True


def test_committed_block_of_same_course_is_ignored(store, make_teacher):
    _commit(store, 'C1', 'T1')
    oracle = AvailabilityOracle([make_teacher('T1', 'Ana', ['MATH'])], store, 2025, exclude_course_id='C1')
    assert oracle.is_available('T1', 'Monday', '08:00', '09:00') is True


def test_commitments_from_other_years_do_not_conflict(store, make_teacher):
    _commit(store, 'C2', 'T1', year=2024)
    oracle = AvailabilityOracle([make_teacher('T1', 'Ana', ['MATH'])], store, 2025)
    assert oracle.is_available('T1', 'Monday', '08:00', '09:00') is True


def test_find_conflicting_blocks_reports_course_and_school(store):
    _commit(store, 'C2', 'T1')
    conflicts = find_conflicting_blocks(store, 'T1', 'Monday', '08:00', '09:00', 2025)
    assert len(conflicts) == 1
    assert conflicts[0]['course_name'] == '2A'
    assert conflicts[0]['school_name'] == 'North School'


def test_validate_teacher_schedule_collects_every_problem(store, make_teacher):
    _commit(store, 'C2', 'T1')
    teacher = make_teacher('T1', 'Ana', ['MATH'], availability=[AvailabilitySlot('Monday', '10:00', '12:00')])

    result = validate_teacher_schedule(store, teacher, 'Monday', '08:00', '09:00', 2025)

    assert result['is_valid'] is False
    assert result['errors'] == [
        "Teacher has no declared availability for this time",
        "Already assigned in North School - 2A (08:00-09:00)",
    ]
    assert result['warnings'] == []


def test_oracle_agrees_with_full_validation(store, make_teacher):
    _commit(store, 'C2', 'T1', day='TUESDAY')
    teacher = make_teacher('T1', 'Ana', ['MATH'], availability=[AvailabilitySlot('Tuesday', '08:00', '12:00')])
    oracle = AvailabilityOracle([teacher], store, 2025, exclude_course_id='C1')

    for start, end in [('08:00', '09:00'), ('09:00', '10:00'), ('11:30', '12:30')]:
        expected = validate_teacher_schedule(store, teacher, 'Tuesday', start, end, 2025, 'C1')['is_valid']
        assert oracle.is_available('T1', 'Tuesday', start, end) is expected
    assert oracle.is_available('T1', 'Tuesday', '08:00', '09:00') is False


def test_validate_teacher_schedule_accepts_free_teacher(store, make_teacher):
    result = validate_teacher_schedule(store, make_teacher('T1', 'Ana', ['MATH']), 'Monday', '08:00', '09:00', 2025)
    assert result == {'is_valid': True, 'errors': [], 'warnings': []}
