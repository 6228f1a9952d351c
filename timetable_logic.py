import logging
import math
from collections import defaultdict, namedtuple
from datetime import datetime

import mysql.connector

from availability import AvailabilityOracle
from data_models import (GenerationRequest, GenerationResult, GenerationStats, ScheduleBlock,
                         SubjectCoverage)
from db_config import GenerationDefaults
from time_slots import generate_week_slots, time_to_minutes, times_overlap

logger = logging.getLogger(__name__)

Candidate = namedtuple('Candidate', ['day', 'slot', 'demand', 'subject_index', 'priority'])


class StructuralError(Exception):
    """Generation cannot start: the course is missing, nothing was requested, or the jornada is unknown."""


def _round_half_up(value):
    return int(math.floor(value + 0.5))


def _hours(minutes):
    hours = minutes / 60
    return int(hours) if float(hours).is_integer() else round(hours, 2)


class DemandModel:
    """
    Per-call view of what the course needs: requested subjects, the running
    minutes assigned to each, and the ordered list of qualified teachers.
    """

    def __init__(self, subjects, teachers):
        self.subjects = []
        self.minutes_assigned = {}
        self.teachers_by_subject = {}
        self.warnings = []

        for demand in subjects:
            if demand.subject_id in self.minutes_assigned:
                self.warnings.append(
                    f"{demand.subject_name} was requested more than once; only the first entry is used")
                continue
            self.subjects.append(demand)
            self.minutes_assigned[demand.subject_id] = 0
            self.teachers_by_subject[demand.subject_id] = self._qualified_teachers(demand, teachers)

            if not self.teachers_by_subject[demand.subject_id]:
                self.warnings.append(f"No qualified teachers available for {demand.subject_name}")

    @staticmethod
    def _qualified_teachers(demand, teachers):
        qualified = [t for t in teachers if demand.subject_id in t.qualified_subjects]
        if demand.preferred_teacher_id:
            preferred = next((t for t in qualified if t.id == demand.preferred_teacher_id), None)
            if preferred is not None:
                # Tried first, not exclusively
                qualified.remove(preferred)
                qualified.insert(0, preferred)
        return qualified

    def required_minutes(self, demand):
        return demand.hours_per_week * 60

    def remaining_hours(self, demand):
        return demand.hours_per_week - self.minutes_assigned[demand.subject_id] / 60

    def fits(self, demand, minutes):
        """A block fits while it keeps the subject within its weekly quota."""
        return self.minutes_assigned[demand.subject_id] + minutes <= self.required_minutes(demand)

    def record(self, demand, minutes):
        self.minutes_assigned[demand.subject_id] += minutes


def candidate_priority(demand_model, demand, blocks_on_day=0):
    """Deficit-first score: remaining hours weighted, minus blocks of the subject already that day."""
    return demand_model.remaining_hours(demand) * GenerationDefaults.PRIORITY_WEIGHT - blocks_on_day


def build_day_rank(days, preferred_days=None):
    """Weekday order used for tie-breaks; preferred days come first, keeping the week order otherwise."""
    preferred = [d for d in days if d in set(preferred_days or [])]
    ordered = preferred + [d for d in days if d not in preferred]
    return {day: index for index, day in enumerate(ordered)}


def candidate_sort_key(candidate, day_rank):
    return (
        -candidate.priority,
        day_rank.get(candidate.day, len(day_rank)),
        time_to_minutes(candidate.slot.start_time),
        candidate.subject_index,
    )


def enumerate_candidates(week_slots, demand_model):
    """Every (day, slot, subject) triple with its priority computed before any assignment."""
    candidates = []
    for day, slots in week_slots.items():
        for slot in slots:
            for index, demand in enumerate(demand_model.subjects):
                candidates.append(Candidate(
                    day=day,
                    slot=slot,
                    demand=demand,
                    subject_index=index,
                    priority=candidate_priority(demand_model, demand),
                ))
    return candidates


def sort_candidates(candidates, day_rank):
    return sorted(candidates, key=lambda c: candidate_sort_key(c, day_rank))


class PriorityScheduler:
    """
    Single forward greedy pass over the candidates. No backtracking: a
    candidate that fails a hard constraint is dropped and never retried.

    All running counters live on the instance, one instance per generation call.
    """

    def __init__(self, course_id, demand_model, oracle, constraints, day_rank):
        self.course_id = course_id
        self.demand_model = demand_model
        self.oracle = oracle
        self.constraints = constraints
        self.day_rank = day_rank

        self.blocks = []
        self.blocks_by_day = defaultdict(list)
        self.course_blocks_per_day = defaultdict(int)
        self.subject_blocks_per_day = defaultdict(int)   # (subject_id, day)
        self.teacher_blocks_per_day = defaultdict(int)   # (teacher_id, day)
        self.attempts = 0
        self.dropped = 0

    def run(self, candidates):
        if self.constraints.priority_strategy == 'dynamic':
            self._run_dynamic(candidates)
        else:
            for candidate in sort_candidates(candidates, self.day_rank):
                self.try_assign(candidate)
        return self.blocks

    def _run_dynamic(self, candidates):
        """Re-scores the remaining candidates against the live counters before every attempt."""
        remaining = list(candidates)
        while remaining:
            remaining = [
                c for c in remaining
                if self.demand_model.fits(c.demand, c.slot.duration_minutes)
            ]
            if not remaining:
                break
            rescored = [self._rescore(c) for c in remaining]
            best = min(range(len(rescored)), key=lambda i: candidate_sort_key(rescored[i], self.day_rank))
            remaining.pop(best)
            self.try_assign(rescored[best])

    def _rescore(self, candidate):
        blocks_on_day = self.subject_blocks_per_day[(candidate.demand.subject_id, candidate.day)]
        return candidate._replace(
            priority=candidate_priority(self.demand_model, candidate.demand, blocks_on_day))

    def try_assign(self, candidate):
        """Commits the candidate to the first suitable teacher. Returns True when a block was added."""
        self.attempts += 1
        demand = candidate.demand
        day = candidate.day
        slot = candidate.slot

        if not self.demand_model.fits(demand, slot.duration_minutes):
            return False

        if self._course_busy(day, slot):
            return False

        max_per_day = self.constraints.max_blocks_per_day
        if max_per_day is not None and self.course_blocks_per_day[day] >= max_per_day:
            return False

        if self.constraints.avoid_consecutive_blocks and self._follows_same_subject(day, slot, demand.subject_id):
            return False

        if self.subject_blocks_per_day[(demand.subject_id, day)] >= self.constraints.max_subject_blocks_per_day:
            return False

        for teacher in self.demand_model.teachers_by_subject.get(demand.subject_id, []):
            if self.teacher_blocks_per_day[(teacher.id, day)] >= self.constraints.max_teacher_blocks_per_day:
                continue
            if self._teacher_back_to_back(teacher.id, day, slot):
                continue
            if not self.oracle.is_available(teacher.id, day, slot.start_time, slot.end_time):
                continue
            self._commit(candidate, teacher)
            return True

        self.dropped += 1
        return False

    def _course_busy(self, day, slot):
        return any(
            times_overlap(b.start_time, b.end_time, slot.start_time, slot.end_time)
            for b in self.blocks_by_day[day]
        )

    def _follows_same_subject(self, day, slot, subject_id):
        start = time_to_minutes(slot.start_time)
        return any(
            b.subject_id == subject_id and time_to_minutes(b.end_time) == start
            for b in self.blocks_by_day[day]
        )

    def _teacher_back_to_back(self, teacher_id, day, slot):
        start = time_to_minutes(slot.start_time)
        end = time_to_minutes(slot.end_time)
        return any(
            b.teacher_id == teacher_id
            and (time_to_minutes(b.end_time) == start or time_to_minutes(b.start_time) == end)
            for b in self.blocks_by_day[day]
        )

    def _commit(self, candidate, teacher):
        demand = candidate.demand
        block = ScheduleBlock(
            day=candidate.day,
            start_time=candidate.slot.start_time,
            end_time=candidate.slot.end_time,
            subject_id=demand.subject_id,
            teacher_id=teacher.id,
            course_id=self.course_id,
            subject_name=demand.subject_name,
            teacher_name=teacher.name,
        )
        self.blocks.append(block)
        self.blocks_by_day[candidate.day].append(block)
        self.demand_model.record(demand, candidate.slot.duration_minutes)
        self.course_blocks_per_day[candidate.day] += 1
        self.subject_blocks_per_day[(demand.subject_id, candidate.day)] += 1
        self.teacher_blocks_per_day[(teacher.id, candidate.day)] += 1


class ResultAggregator:
    """Turns the scheduler's output into coverage statistics and warnings."""

    def __init__(self, demand_model):
        self.demand_model = demand_model

    def subject_coverage(self):
        coverage = []
        for demand in self.demand_model.subjects:
            assigned_minutes = self.demand_model.minutes_assigned[demand.subject_id]
            required_minutes = self.demand_model.required_minutes(demand)
            percentage = (_round_half_up(assigned_minutes / required_minutes * 100)
                          if required_minutes > 0 else 100)
            coverage.append(SubjectCoverage(
                subject_id=demand.subject_id,
                subject=demand.subject_name,
                required=demand.hours_per_week,
                assigned=_hours(assigned_minutes),
                percentage=percentage,
            ))
        return coverage

    def aggregate(self, blocks, started_at, oracle=None, warnings=None):
        warnings = list(warnings or [])
        subjects_coverage = self.subject_coverage()

        for demand, sc in zip(self.demand_model.subjects, subjects_coverage):
            if self.demand_model.minutes_assigned[demand.subject_id] < self.demand_model.required_minutes(demand):
                warnings.append(
                    f"{sc.subject}: only {sc.assigned}/{sc.required:g} hours assigned ({sc.percentage}%)")

        total_required = sum(d.hours_per_week for d in self.demand_model.subjects)
        total_assigned_minutes = sum(self.demand_model.minutes_assigned.values())
        coverage_percentage = (_round_half_up(total_assigned_minutes / 60 / total_required * 100)
                               if total_required > 0 else 100)

        elapsed = datetime.now() - started_at
        stats = GenerationStats(
            total_blocks=len(blocks),
            teachers_used=len({b.teacher_id for b in blocks}),
            coverage_percentage=coverage_percentage,
            subjects_coverage=subjects_coverage,
            total_required_hours=total_required,
            total_assigned_hours=_hours(total_assigned_minutes),
            generation_time_ms=int(elapsed.total_seconds() * 1000),
            availability_checks=oracle.checks if oracle else 0,
            cache_hits=oracle.cache_hits if oracle else 0,
        )
        return GenerationResult(success=True, blocks=list(blocks), errors=[], warnings=warnings, stats=stats)


class TimetableGenerator:
    """
    Generates one course's weekly schedule with a priority-driven greedy heuristic.

    Data is loaded once from the store, then a single pass assigns blocks. Blocks
    are returned to the caller; nothing is persisted here.
    """

    def __init__(self, store, days=None):
        self.store = store
        self.days = list(days or GenerationDefaults.DAYS)

    def generate(self, request):
        started_at = datetime.now()
        logger.info(f"Starting schedule generation for course {request.course_id}")

        try:
            problem_data = self._fetch_problem_data(request)
        except StructuralError as e:
            logger.warning(f"Schedule generation aborted for course {request.course_id}: {e}")
            return GenerationResult(success=False, errors=[str(e)])
        except mysql.connector.Error as e:
            logger.error(f"Database error loading data for course {request.course_id}: {e}", exc_info=True)
            return GenerationResult(success=False, errors=[f"Database error: {e}"])

        demand_model = DemandModel(request.subjects, problem_data['teachers'])
        week_slots = generate_week_slots(problem_data['day_config'], self.days)
        oracle = AvailabilityOracle(
            problem_data['teachers'],
            self.store,
            request.academic_year,
            exclude_course_id=request.course_id,
        )

        candidates = enumerate_candidates(week_slots, demand_model)
        logger.info(f"Total candidate assignments: {len(candidates)}")

        day_rank = build_day_rank(self.days, request.constraints.preferred_days)
        scheduler = PriorityScheduler(request.course_id, demand_model, oracle, request.constraints, day_rank)
        blocks = scheduler.run(candidates)

        result = ResultAggregator(demand_model).aggregate(
            blocks, started_at, oracle=oracle, warnings=demand_model.warnings)

        stats = result.stats
        logger.info(
            f"Schedule generation completed for course {request.course_id}: "
            f"{stats.generation_time_ms}ms, {stats.total_blocks} blocks, "
            f"{stats.teachers_used} teachers, {stats.coverage_percentage}% coverage, "
            f"{oracle.checks} availability checks ({oracle.cache_hits} cache hits)"
        )
        return result

    def _fetch_problem_data(self, request):
        """Loads course, jornada and teacher roster; raises StructuralError when generation cannot start."""
        if not request.subjects:
            raise StructuralError("No subjects requested")

        course = self.store.get_course(request.course_id)
        if not course:
            raise StructuralError(f"Course {request.course_id} not found")

        day_config = self.store.get_school_day_config(course['school_id'], course.get('academic_level'))
        if day_config is None:
            raise StructuralError(f"No schedule configuration found for school {course['school_id']}")

        teachers = self.store.get_teachers(course['school_id'], request.academic_year)
        logger.info(
            f"Data loaded for course {request.course_id}: "
            f"{len(request.subjects)} subjects, {len(teachers)} teachers"
        )
        return {
            'course': course,
            'day_config': day_config,
            'teachers': teachers,
        }


def generate_schedule(request, store):
    """Convenience wrapper accepting either a GenerationRequest or its JSON dict."""
    if not isinstance(request, GenerationRequest):
        request = GenerationRequest.from_dict(request)
    return TimetableGenerator(store).generate(request)
