"""
Data access for the schedule generator: roster, committed schedules, school
jornada configuration and the generation log.

Two stores share the same method names: MySQLSchoolStore for the deployed
application and InMemorySchoolStore for callers that already hold a snapshot.
"""

import copy
import itertools
import json
import logging
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime

import mysql.connector
from mysql.connector import Error

from availability import find_conflicting_blocks
from data_models import AvailabilitySlot, SchoolDayConfig, ScheduleBlock, Teacher
from db_config import DBConfig, GenerationDefaults
from schedule_compatibility import create_config_snapshot
from time_slots import calculate_duration, normalize_time

logger = logging.getLogger(__name__)


# --- Shared helpers ---

def cross_course_conflicts(store, course_id, academic_year, blocks):
    """
    Warnings for blocks whose teacher is already booked in another course.
    These are reported, never rejected.
    """
    warnings = []
    for block in blocks:
        if not block.teacher_id:
            continue
        for other in find_conflicting_blocks(store, block.teacher_id, block.day, block.start_time,
                                             block.end_time, academic_year, exclude_course_id=course_id):
            teacher_name = block.teacher_name or block.teacher_id
            warnings.append(
                f"{teacher_name} already assigned in {other.get('school_name', '')} - "
                f"{other.get('course_name', '')} "
                f"({normalize_time(other['start_time'])}-{normalize_time(other['end_time'])})"
            )
    return warnings


def level_config_or_default(row, academic_level):
    """Display lattice config for a level, falling back to the built-in jornada."""
    level = academic_level or GenerationDefaults.DEFAULT_ACADEMIC_LEVEL
    if not row:
        return copy.deepcopy(GenerationDefaults.LEVEL_CONFIGS.get(
            level, GenerationDefaults.LEVEL_CONFIGS[GenerationDefaults.DEFAULT_ACADEMIC_LEVEL]))
    breaks = _decode_json(row.get('breaks'), default=[])
    return {
        'start_time': normalize_time(row['start_time']),
        'end_time': normalize_time(row['end_time']),
        'block_duration': int(row['block_duration']),
        'break_duration': int(row.get('break_duration') or 0),
        'breaks': breaks,
    }


def _decode_json(raw, default):
    if raw is None:
        return default
    if isinstance(raw, bytes):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError:
            logger.error(f"Failed to decode JSON column: {raw!r}")
            return default
    if isinstance(raw, (dict, list)):
        return raw
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Invalid JSON column value: {raw!r}. Using default.")
        return default


# --- Row conversion for the MySQL store ---

def day_config_from_row(row):
    """Builds a SchoolDayConfig from a schools or schedule_level_configs row."""
    if not row:
        return None
    return SchoolDayConfig.from_dict({
        'start_time': normalize_time(row.get('start_time') or row.get('schedule_start_time')),
        'end_time': normalize_time(row.get('end_time') or row.get('schedule_end_time')),
        'block_duration': row['block_duration'],
        'break_duration': row.get('break_duration') or 0,
        'lunch_break_config': _decode_json(row.get('lunch_break_config'), default={}),
    })


def teachers_from_rows(teacher_rows, subject_rows, availability_rows):
    """Attaches qualified subjects and declared availability to each teacher row."""
    subjects = defaultdict(set)
    for row in subject_rows:
        subjects[str(row['teacher_id'])].add(str(row['subject_id']))

    availability = defaultdict(list)
    for row in availability_rows:
        availability[str(row['teacher_id'])].append(AvailabilitySlot(
            day_of_week=row['day_of_week'],
            start_time=normalize_time(row['start_time']),
            end_time=normalize_time(row['end_time']),
        ))

    teachers = []
    for row in teacher_rows:
        teacher_id = str(row['teacher_id'])
        name = row.get('name') or f"{row.get('first_name', '')} {row.get('last_name', '')}".strip()
        teachers.append(Teacher(
            id=teacher_id,
            name=name,
            qualified_subjects=subjects[teacher_id],
            availability=availability[teacher_id],
        ))
    return teachers


def committed_block_from_row(row):
    return {
        'course_id': str(row['course_id']),
        'course_name': row.get('course_name', ''),
        'school_name': row.get('school_name', ''),
        'teacher_id': str(row['teacher_id']),
        'subject_id': str(row['subject_id']),
        'day_of_week': row['day_of_week'],
        'start_time': normalize_time(row['start_time']),
        'end_time': normalize_time(row['end_time']),
    }


class MySQLSchoolStore:
    """Reads and writes generator data in the application's MySQL database."""

    def _get_connection(self):
        conn = DBConfig.get_connection()
        if conn is None:
            raise Error(msg="Could not connect to the database")
        return conn

    def _execute_query(self, query, params=None, fetch_one=False):
        """Helper method to execute a SELECT query."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor(dictionary=True, buffered=True)
            try:
                cursor.execute(query, params)
                if fetch_one:
                    return cursor.fetchone()
                return cursor.fetchall()
            finally:
                cursor.close()
        except mysql.connector.Error as e:
            logger.error(f"Database error in _execute_query: {e}", exc_info=True)
            raise
        finally:
            conn.close()

    def _execute_dml(self, query, params=None):
        """Helper method to execute a single INSERT/UPDATE/DELETE and return lastrowid."""
        with self._transaction() as cursor:
            cursor.execute(query, params)
            return cursor.lastrowid

    @contextmanager
    def _transaction(self):
        conn = self._get_connection()
        cursor = conn.cursor(buffered=True)
        try:
            yield cursor
            conn.commit()
        except mysql.connector.Error as e:
            conn.rollback()
            logger.error(f"Database error in transaction, rolled back: {e}", exc_info=True)
            raise
        finally:
            cursor.close()
            conn.close()

    # Roster store

    def get_course(self, course_id):
        return self._execute_query(
            "SELECT course_id, name, school_id, academic_level FROM courses WHERE course_id = %s",
            (course_id,), fetch_one=True)

    def get_teachers(self, school_id, academic_year):
        teacher_rows = self._execute_query(
            "SELECT teacher_id, first_name, last_name FROM teachers WHERE school_id = %s ORDER BY last_name",
            (school_id,))
        if not teacher_rows:
            return []
        subject_rows = self._execute_query("""
            SELECT ts.teacher_id, ts.subject_id
            FROM teacher_subjects ts
            JOIN teachers t ON ts.teacher_id = t.teacher_id
            WHERE t.school_id = %s
        """, (school_id,))
        availability_rows = self._execute_query("""
            SELECT ta.teacher_id, ta.day_of_week, ta.start_time, ta.end_time
            FROM teacher_availability ta
            JOIN teachers t ON ta.teacher_id = t.teacher_id
            WHERE t.school_id = %s AND ta.academic_year = %s
            ORDER BY ta.day_of_week, ta.start_time
        """, (school_id, academic_year))
        return teachers_from_rows(teacher_rows, subject_rows, availability_rows)

    # School configuration store

    def get_school_day_config(self, school_id, academic_level=None):
        if academic_level:
            row = self._execute_query("""
                SELECT start_time, end_time, block_duration, break_duration, lunch_break_config
                FROM schedule_level_configs
                WHERE school_id = %s AND academic_level = %s
            """, (school_id, academic_level), fetch_one=True)
            if row:
                return day_config_from_row(row)
        row = self._execute_query("""
            SELECT schedule_start_time, schedule_end_time, block_duration, break_duration, lunch_break_config
            FROM schools WHERE school_id = %s
        """, (school_id,), fetch_one=True)
        return day_config_from_row(row)

    def get_level_config(self, school_id, academic_level=None):
        row = None
        if academic_level:
            row = self._execute_query("""
                SELECT start_time, end_time, block_duration, break_duration, breaks
                FROM schedule_level_configs
                WHERE school_id = %s AND academic_level = %s
            """, (school_id, academic_level), fetch_one=True)
        return level_config_or_default(row, academic_level)

    # Schedule store

    def get_teacher_blocks(self, teacher_id, day, academic_year):
        rows = self._execute_query("""
            SELECT sb.course_id, sb.teacher_id, sb.subject_id, sb.day_of_week, sb.start_time, sb.end_time,
                   c.name AS course_name, sch.name AS school_name
            FROM schedule_blocks sb
            JOIN schedules s ON sb.schedule_id = s.schedule_id
            JOIN courses c ON sb.course_id = c.course_id
            JOIN schools sch ON c.school_id = sch.school_id
            WHERE sb.teacher_id = %s AND sb.day_of_week = %s
              AND s.academic_year = %s AND s.is_active = 1
        """, (teacher_id, day, academic_year))
        return [committed_block_from_row(r) for r in rows or []]

    def get_course_blocks(self, course_id, academic_year):
        rows = self._execute_query("""
            SELECT sb.course_id, sb.teacher_id, sb.subject_id, sb.day_of_week, sb.start_time, sb.end_time,
                   sub.name AS subject_name,
                   CONCAT(t.first_name, ' ', t.last_name) AS teacher_name
            FROM schedule_blocks sb
            JOIN schedules s ON sb.schedule_id = s.schedule_id
            LEFT JOIN subjects sub ON sb.subject_id = sub.subject_id
            LEFT JOIN teachers t ON sb.teacher_id = t.teacher_id
            WHERE sb.course_id = %s AND s.academic_year = %s AND s.is_active = 1
            ORDER BY sb.day_of_week, sb.start_time
        """, (course_id, academic_year))
        return [
            ScheduleBlock(
                day=r['day_of_week'],
                start_time=normalize_time(r['start_time']),
                end_time=normalize_time(r['end_time']),
                subject_id=str(r['subject_id']),
                teacher_id=str(r['teacher_id']) if r['teacher_id'] is not None else '',
                course_id=str(r['course_id']),
                subject_name=r.get('subject_name') or '',
                teacher_name=r.get('teacher_name') or '',
            )
            for r in rows or []
        ]

    def get_active_schedule(self, course_id, academic_year):
        return self._execute_query("""
            SELECT schedule_id, course_id, school_id, academic_year, config_snapshot, is_deprecated
            FROM schedules WHERE course_id = %s AND academic_year = %s AND is_active = 1
        """, (course_id, academic_year), fetch_one=True)

    def save_course_schedule(self, course_id, academic_year, blocks):
        """
        Replaces the course's blocks for the academic year.
        Cross-course teacher conflicts are returned as warnings; blocks are saved regardless.
        """
        course = self.get_course(course_id)
        if not course:
            return {'success': False, 'error': f"Course {course_id} not found", 'warnings': []}

        warnings = cross_course_conflicts(self, course_id, academic_year, blocks)
        snapshot = self._config_snapshot(course)
        schedule = self.get_active_schedule(course_id, academic_year)

        with self._transaction() as cursor:
            if schedule:
                schedule_id = schedule['schedule_id']
                cursor.execute(
                    "UPDATE schedules SET config_snapshot = %s, is_deprecated = 0 WHERE schedule_id = %s",
                    (snapshot, schedule_id))
                cursor.execute("DELETE FROM schedule_blocks WHERE schedule_id = %s", (schedule_id,))
            else:
                cursor.execute("""
                    INSERT INTO schedules (school_id, course_id, name, academic_year, is_active, config_snapshot)
                    VALUES (%s, %s, %s, %s, 1, %s)
                """, (course['school_id'], course_id, f"Schedule {course['name']} - {academic_year}",
                      academic_year, snapshot))
                schedule_id = cursor.lastrowid

            if blocks:
                cursor.executemany("""
                    INSERT INTO schedule_blocks
                    (schedule_id, course_id, subject_id, teacher_id, day_of_week, start_time, end_time, duration)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """, [
                    (schedule_id, course_id, b.subject_id, b.teacher_id or None, b.day,
                     b.start_time, b.end_time, calculate_duration(b.start_time, b.end_time))
                    for b in blocks
                ])

        logger.info(f"Saved {len(blocks)} blocks for course {course_id} ({len(warnings)} conflict warnings)")
        return {'success': True, 'schedule_id': schedule_id, 'warnings': warnings}

    def _config_snapshot(self, course):
        config = self.get_school_day_config(course['school_id'], course.get('academic_level'))
        if config is None:
            return None
        return create_config_snapshot(config.start_time, config.end_time, config.block_duration,
                                      course.get('academic_level') or '')

    # Generation log

    def setup_generation_log_table(self):
        try:
            self._execute_dml("""
                CREATE TABLE IF NOT EXISTS schedule_generation_log (
                    log_id INT AUTO_INCREMENT PRIMARY KEY,
                    course_id VARCHAR(64) NOT NULL,
                    academic_year INT NOT NULL,
                    status VARCHAR(16) NOT NULL,
                    coverage_percentage INT NOT NULL DEFAULT 0,
                    total_blocks INT NOT NULL DEFAULT 0,
                    teachers_used INT NOT NULL DEFAULT 0,
                    warnings JSON,
                    errors JSON,
                    generation_time_ms INT NOT NULL DEFAULT 0,
                    generation_date DATETIME DEFAULT CURRENT_TIMESTAMP
                ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4;
            """)
            logger.info("schedule_generation_log table is ready.")
            return True
        except Error as e:
            logger.error(f"Error setting up schedule_generation_log table: {e}")
            return False

    def save_generation_log(self, course_id, academic_year, result):
        """Save a generation log row and return its log_id."""
        stats = result.stats
        params = (
            course_id,
            academic_year,
            result.status,
            stats.coverage_percentage if stats else 0,
            stats.total_blocks if stats else 0,
            stats.teachers_used if stats else 0,
            json.dumps(result.warnings),
            json.dumps(result.errors),
            stats.generation_time_ms if stats else 0,
        )
        log_id = self._execute_dml("""
            INSERT INTO schedule_generation_log
            (course_id, academic_year, status, coverage_percentage, total_blocks, teachers_used,
             warnings, errors, generation_time_ms)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        """, params)
        logger.info(f"Schedule generation log saved with log_id: {log_id}")
        return log_id

    def get_generation_logs(self, status_filter=None, limit=50):
        query = """
            SELECT log_id, course_id, academic_year, status, coverage_percentage, total_blocks,
                   teachers_used, warnings, errors, generation_time_ms, generation_date
            FROM schedule_generation_log
        """
        params = []
        if status_filter:
            query += " WHERE status = %s"
            params.append(status_filter)
        query += " ORDER BY generation_date DESC LIMIT %s"
        params.append(int(limit))
        rows = self._execute_query(query, params) or []
        for row in rows:
            row['warnings'] = _decode_json(row.get('warnings'), default=[])
            row['errors'] = _decode_json(row.get('errors'), default=[])
        return rows


class InMemorySchoolStore:
    """
    Snapshot-backed store. Holds the same shapes as the MySQL store so the
    generator and the web layer can run without a database.
    """

    def __init__(self):
        self.schools = {}
        self.courses = {}
        self.day_configs = {}      # (school_id, academic_level or None) -> SchoolDayConfig
        self.level_configs = {}    # (school_id, academic_level) -> lattice config dict
        self.teachers = {}         # school_id -> [(teacher, academic_year or None)]
        self.schedules = {}        # schedule_id -> schedule dict with 'blocks'
        self.generation_logs = []
        self._ids = itertools.count(1)

    # Loading helpers

    def add_school(self, school_id, name, day_config=None):
        self.schools[str(school_id)] = {'school_id': str(school_id), 'name': name}
        if day_config is not None:
            self.day_configs[(str(school_id), None)] = day_config

    def add_course(self, course_id, name, school_id, academic_level=None):
        self.courses[str(course_id)] = {
            'course_id': str(course_id),
            'name': name,
            'school_id': str(school_id),
            'academic_level': academic_level,
        }

    def set_level_config(self, school_id, academic_level, day_config=None, lattice_config=None):
        if day_config is not None:
            self.day_configs[(str(school_id), academic_level)] = day_config
        if lattice_config is not None:
            self.level_configs[(str(school_id), academic_level)] = lattice_config

    def add_teacher(self, school_id, teacher, academic_year=None):
        self.teachers.setdefault(str(school_id), []).append((teacher, academic_year))

    # Roster store

    def get_course(self, course_id):
        course = self.courses.get(str(course_id))
        return dict(course) if course else None

    def get_teachers(self, school_id, academic_year):
        return [
            teacher for teacher, year in self.teachers.get(str(school_id), [])
            if year is None or year == academic_year
        ]

    # School configuration store

    def get_school_day_config(self, school_id, academic_level=None):
        school_id = str(school_id)
        if academic_level and (school_id, academic_level) in self.day_configs:
            return self.day_configs[(school_id, academic_level)]
        return self.day_configs.get((school_id, None))

    def get_level_config(self, school_id, academic_level=None):
        row = self.level_configs.get((str(school_id), academic_level))
        if row:
            return copy.deepcopy(row)
        return level_config_or_default(None, academic_level)

    # Schedule store

    def _active_schedules(self, academic_year):
        return [s for s in self.schedules.values() if s['is_active'] and s['academic_year'] == academic_year]

    def get_teacher_blocks(self, teacher_id, day, academic_year):
        rows = []
        for schedule in self._active_schedules(academic_year):
            course = self.courses.get(schedule['course_id'], {})
            school = self.schools.get(course.get('school_id'), {})
            for block in schedule['blocks']:
                if block.teacher_id == str(teacher_id) and block.day.lower() == str(day).lower():
                    rows.append({
                        'course_id': block.course_id,
                        'course_name': course.get('name', ''),
                        'school_name': school.get('name', ''),
                        'teacher_id': block.teacher_id,
                        'subject_id': block.subject_id,
                        'day_of_week': block.day,
                        'start_time': block.start_time,
                        'end_time': block.end_time,
                    })
        return rows

    def get_course_blocks(self, course_id, academic_year):
        schedule = self.get_active_schedule(course_id, academic_year)
        return list(schedule['blocks']) if schedule else []

    def get_active_schedule(self, course_id, academic_year):
        for schedule in self._active_schedules(academic_year):
            if schedule['course_id'] == str(course_id):
                return schedule
        return None

    def save_course_schedule(self, course_id, academic_year, blocks):
        course = self.get_course(course_id)
        if not course:
            return {'success': False, 'error': f"Course {course_id} not found", 'warnings': []}

        warnings = cross_course_conflicts(self, str(course_id), academic_year, blocks)
        config = self.get_school_day_config(course['school_id'], course.get('academic_level'))
        snapshot = None
        if config is not None:
            snapshot = create_config_snapshot(config.start_time, config.end_time, config.block_duration,
                                              course.get('academic_level') or '')

        schedule = self.get_active_schedule(course_id, academic_year)
        if schedule is None:
            schedule_id = next(self._ids)
            schedule = {
                'schedule_id': schedule_id,
                'course_id': str(course_id),
                'school_id': course['school_id'],
                'name': f"Schedule {course['name']} - {academic_year}",
                'academic_year': academic_year,
                'is_active': True,
                'is_deprecated': False,
                'config_snapshot': snapshot,
                'blocks': [],
            }
            self.schedules[schedule_id] = schedule

        schedule['blocks'] = [
            ScheduleBlock(
                day=b.day, start_time=b.start_time, end_time=b.end_time, subject_id=b.subject_id,
                teacher_id=b.teacher_id, course_id=str(course_id),
                subject_name=b.subject_name, teacher_name=b.teacher_name,
            )
            for b in blocks
        ]
        schedule['config_snapshot'] = snapshot
        schedule['is_deprecated'] = False
        return {'success': True, 'schedule_id': schedule['schedule_id'], 'warnings': warnings}

    # Generation log

    def save_generation_log(self, course_id, academic_year, result):
        stats = result.stats
        log_id = next(self._ids)
        self.generation_logs.append({
            'log_id': log_id,
            'course_id': str(course_id),
            'academic_year': academic_year,
            'status': result.status,
            'coverage_percentage': stats.coverage_percentage if stats else 0,
            'total_blocks': stats.total_blocks if stats else 0,
            'teachers_used': stats.teachers_used if stats else 0,
            'warnings': list(result.warnings),
            'errors': list(result.errors),
            'generation_time_ms': stats.generation_time_ms if stats else 0,
            'generation_date': datetime.now(),
        })
        return log_id

    def get_generation_logs(self, status_filter=None, limit=50):
        logs = [l for l in self.generation_logs if not status_filter or l['status'] == status_filter]
        logs.sort(key=lambda l: l['generation_date'], reverse=True)
        return logs[:limit]
