# data_models.py
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from db_config import GenerationDefaults


def _pick(data: Dict[str, Any], *keys, default=None):
    """Returns the first present, non-None value among camelCase/snake_case aliases."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _to_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        v = value.strip().lower()
        if v in ("true", "1", "yes", "y", "on"):
            return True
        if v in ("false", "0", "no", "n", "off"):
            return False
    return default


def normalize_day(value: Any) -> str:
    """Maps any casing of a weekday name ('MONDAY', 'monday') to 'Monday'."""
    for day in GenerationDefaults.WEEK:
        if str(value).strip().lower() == day.lower():
            return day
    raise ValueError(f"Unknown day of week: {value!r}")


def _optional_int(value: Any, field_name: str) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field_name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class TimeSlot:
    start_time: str  # "HH:MM"
    end_time: str
    duration_minutes: int

    def to_dict(self):
        return {
            'startTime': self.start_time,
            'endTime': self.end_time,
            'duration': self.duration_minutes,
        }


@dataclass(frozen=True)
class LunchWindow:
    enabled: bool
    start: str
    end: str


@dataclass
class SchoolDayConfig:
    start_time: str
    end_time: str
    block_duration: int
    break_duration: int = 0
    lunch_windows: Dict[str, LunchWindow] = field(default_factory=dict)

    def lunch_window_for(self, day: str) -> Optional[LunchWindow]:
        window = self.lunch_windows.get(day)
        if window is None:
            # Legacy configs key the lunch map by upper-case day names
            window = self.lunch_windows.get(day.upper())
        if window is not None and window.enabled:
            return window
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchoolDayConfig":
        lunch_raw = _pick(data, 'lunchBreakConfig', 'lunch_break_config', 'lunch_windows', default={})
        if isinstance(lunch_raw, (str, bytes)):
            lunch_raw = json.loads(lunch_raw) if lunch_raw else {}
        lunch_windows = {}
        for day, window in (lunch_raw or {}).items():
            if isinstance(window, LunchWindow):
                lunch_windows[day] = window
                continue
            lunch_windows[day] = LunchWindow(
                enabled=_to_bool(window.get('enabled'), False),
                start=window.get('start') or window.get('startTime') or '00:00',
                end=window.get('end') or window.get('endTime') or '00:00',
            )
        return cls(
            start_time=_pick(data, 'startTime', 'start_time', 'scheduleStartTime', 'schedule_start_time'),
            end_time=_pick(data, 'endTime', 'end_time', 'scheduleEndTime', 'schedule_end_time'),
            block_duration=int(_pick(data, 'blockDuration', 'block_duration')),
            break_duration=int(_pick(data, 'breakDuration', 'break_duration', default=0)),
            lunch_windows=lunch_windows,
        )


@dataclass(frozen=True)
class AvailabilitySlot:
    day_of_week: str
    start_time: str
    end_time: str


@dataclass
class Teacher:
    id: str
    name: str
    qualified_subjects: Set[str] = field(default_factory=set)
    availability: List[AvailabilitySlot] = field(default_factory=list)

    def availability_for(self, day: str) -> List[AvailabilitySlot]:
        return [slot for slot in self.availability if slot.day_of_week.lower() == day.lower()]


@dataclass
class SubjectDemand:
    subject_id: str
    subject_name: str
    hours_per_week: float
    preferred_teacher_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubjectDemand":
        subject_id = _pick(data, 'subjectId', 'subject_id')
        if subject_id is None:
            raise ValueError("Each subject needs a subjectId")
        hours = _pick(data, 'hoursPerWeek', 'hours_per_week', default=0)
        try:
            hours = float(hours)
        except (TypeError, ValueError):
            raise ValueError(f"hoursPerWeek for subject {subject_id} must be a number, got {hours!r}")
        if hours < 0:
            raise ValueError(f"hoursPerWeek for subject {subject_id} cannot be negative, got {hours:g}")
        preferred = _pick(data, 'preferredTeacherId', 'preferred_teacher_id')
        return cls(
            subject_id=str(subject_id),
            subject_name=str(_pick(data, 'subjectName', 'subject_name', default=subject_id)),
            hours_per_week=hours,
            preferred_teacher_id=str(preferred) if preferred is not None else None,
        )


@dataclass(frozen=True)
class ScheduleBlock:
    day: str
    start_time: str
    end_time: str
    subject_id: str
    teacher_id: str
    course_id: str
    subject_name: str = ''
    teacher_name: str = ''

    @property
    def duration_minutes(self) -> int:
        start_h, start_m = map(int, self.start_time.split(':'))
        end_h, end_m = map(int, self.end_time.split(':'))
        return (end_h * 60 + end_m) - (start_h * 60 + start_m)

    def to_dict(self):
        return {
            'day': self.day,
            'startTime': self.start_time,
            'endTime': self.end_time,
            'subjectId': self.subject_id,
            'subject': self.subject_name,
            'teacherId': self.teacher_id,
            'teacher': self.teacher_name,
            'courseId': self.course_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], course_id: Optional[str] = None) -> "ScheduleBlock":
        from time_slots import normalize_time

        if not isinstance(data, dict):
            raise ValueError("Each block must be a JSON object")
        required = {
            'day': _pick(data, 'day', 'dayOfWeek', 'day_of_week'),
            'startTime': _pick(data, 'startTime', 'start_time'),
            'endTime': _pick(data, 'endTime', 'end_time'),
            'subjectId': _pick(data, 'subjectId', 'subject_id'),
        }
        missing = [name for name, value in required.items() if value in (None, '')]
        if missing:
            raise ValueError(f"Block is missing {', '.join(missing)}")

        start_time = normalize_time(required['startTime'])
        end_time = normalize_time(required['endTime'])
        if start_time >= end_time:
            raise ValueError(f"Block must end after it starts, got {start_time}-{end_time}")

        return cls(
            day=normalize_day(required['day']),
            start_time=start_time,
            end_time=end_time,
            subject_id=str(required['subjectId']),
            teacher_id=str(_pick(data, 'teacherId', 'teacher_id', default='')),
            course_id=str(course_id if course_id is not None else _pick(data, 'courseId', 'course_id')),
            subject_name=_pick(data, 'subject', 'subjectName', 'subject_name', default=''),
            teacher_name=_pick(data, 'teacher', 'teacherName', 'teacher_name', default=''),
        )


@dataclass
class GenerationConstraints:
    avoid_consecutive_blocks: bool = False
    max_blocks_per_day: Optional[int] = None
    max_subject_blocks_per_day: int = GenerationDefaults.MAX_SUBJECT_BLOCKS_PER_DAY
    max_teacher_blocks_per_day: int = GenerationDefaults.MAX_TEACHER_BLOCKS_PER_DAY
    preferred_days: List[str] = field(default_factory=list)
    priority_strategy: str = 'static'

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GenerationConstraints":
        data = data or {}
        strategy = str(_pick(data, 'priorityStrategy', 'priority_strategy', default='static')).lower()
        if strategy not in GenerationDefaults.PRIORITY_STRATEGIES:
            raise ValueError(f"Unknown priority strategy: {strategy}")
        subject_cap = _optional_int(
            _pick(data, 'maxSubjectBlocksPerDay', 'max_subject_blocks_per_day'), 'maxSubjectBlocksPerDay')
        teacher_cap = _optional_int(
            _pick(data, 'maxTeacherBlocksPerDay', 'max_teacher_blocks_per_day'), 'maxTeacherBlocksPerDay')
        return cls(
            avoid_consecutive_blocks=_to_bool(
                _pick(data, 'avoidConsecutiveBlocks', 'avoid_consecutive_blocks'), False),
            max_blocks_per_day=_optional_int(
                _pick(data, 'maxBlocksPerDay', 'max_blocks_per_day'), 'maxBlocksPerDay'),
            max_subject_blocks_per_day=(
                subject_cap if subject_cap is not None else GenerationDefaults.MAX_SUBJECT_BLOCKS_PER_DAY),
            max_teacher_blocks_per_day=(
                teacher_cap if teacher_cap is not None else GenerationDefaults.MAX_TEACHER_BLOCKS_PER_DAY),
            preferred_days=list(_pick(data, 'preferredDays', 'preferred_days', default=[])),
            priority_strategy=strategy,
        )


@dataclass
class GenerationRequest:
    course_id: str
    academic_year: int
    subjects: List[SubjectDemand] = field(default_factory=list)
    constraints: GenerationConstraints = field(default_factory=GenerationConstraints)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationRequest":
        if not isinstance(data, dict):
            raise ValueError("Generation request must be a JSON object")
        course_id = _pick(data, 'courseId', 'course_id')
        if course_id is None:
            raise ValueError("courseId is required")
        academic_year = _optional_int(_pick(data, 'academicYear', 'academic_year'), 'academicYear')
        if academic_year is None:
            raise ValueError("academicYear is required")
        return cls(
            course_id=str(course_id),
            academic_year=academic_year,
            subjects=[SubjectDemand.from_dict(s) for s in data.get('subjects') or []],
            constraints=GenerationConstraints.from_dict(data.get('constraints')),
        )


@dataclass
class SubjectCoverage:
    subject_id: str
    subject: str
    required: float
    assigned: float
    percentage: int

    def to_dict(self):
        return {
            'subjectId': self.subject_id,
            'subject': self.subject,
            'required': self.required,
            'assigned': self.assigned,
            'percentage': self.percentage,
        }


@dataclass
class GenerationStats:
    total_blocks: int
    teachers_used: int
    coverage_percentage: int
    subjects_coverage: List[SubjectCoverage]
    total_required_hours: float
    total_assigned_hours: float
    generation_time_ms: int
    availability_checks: int = 0
    cache_hits: int = 0

    def to_dict(self):
        return {
            'totalBlocks': self.total_blocks,
            'teachersUsed': self.teachers_used,
            'coveragePercentage': self.coverage_percentage,
            'subjectsCoverage': [sc.to_dict() for sc in self.subjects_coverage],
            'totalRequiredHours': self.total_required_hours,
            'totalAssignedHours': self.total_assigned_hours,
            'generationTimeMs': self.generation_time_ms,
            'availabilityChecks': self.availability_checks,
            'cacheHits': self.cache_hits,
        }


@dataclass
class GenerationResult:
    success: bool
    blocks: List[ScheduleBlock] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    stats: Optional[GenerationStats] = None

    @property
    def status(self) -> str:
        """Status label stored in the generation log."""
        if not self.success:
            return 'Failed'
        if self.stats is not None and self.stats.coverage_percentage < 100:
            return 'Partial'
        return 'Success'

    def to_dict(self):
        return {
            'success': self.success,
            'blocks': [b.to_dict() for b in self.blocks],
            'errors': list(self.errors),
            'warnings': list(self.warnings),
            'stats': self.stats.to_dict() if self.stats else None,
        }
