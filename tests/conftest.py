import pytest

from data_models import AvailabilitySlot, GenerationRequest, SchoolDayConfig, Teacher
from db_config import GenerationDefaults
from stores import InMemorySchoolStore


def week_availability(start='08:00', end='18:00', days=None):
    return [AvailabilitySlot(day, start, end) for day in (days or GenerationDefaults.DAYS)]


@pytest.fixture
def day_config():
    # 08:00-12:00, four one-hour blocks, no lunch
    return SchoolDayConfig(start_time='08:00', end_time='12:00', block_duration=60)


@pytest.fixture
def make_teacher():
    def _make(teacher_id, name, subjects, availability=None):
        return Teacher(
            id=teacher_id,
            name=name,
            qualified_subjects=set(subjects),
            availability=week_availability() if availability is None else availability,
        )
    return _make


@pytest.fixture
def store(day_config):
    store = InMemorySchoolStore()
    store.add_school('S1', 'North School', day_config)
    store.add_course('C1', '1A', 'S1', 'BASIC')
    store.add_course('C2', '2A', 'S1', 'BASIC')
    return store


@pytest.fixture
def make_request():
    def _make(subjects, course_id='C1', academic_year=2025, **constraints):
        return GenerationRequest.from_dict({
            'courseId': course_id,
            'academicYear': academic_year,
            'subjects': subjects,
            'constraints': constraints,
        })
    return _make
