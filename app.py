from flask import Flask, request, jsonify
import mysql.connector
import logging

from db_config import DBConfig
from data_models import GenerationRequest, ScheduleBlock
from schedule_compatibility import check_schedule_compatibility, get_compatibility_message, parse_config_snapshot
from stores import MySQLSchoolStore
from time_slots import (calculate_blocks_for_config, generate_time_slots_with_breaks,
                        generate_week_slots, normalize_time)
from timetable_logic import TimetableGenerator

# Initialize the Flask app
app = Flask(__name__)
app.secret_key = DBConfig.SECRET_KEY
app.config.from_object(DBConfig)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# --- UTILITY FUNCTIONS ---

def get_store():
    """Store used by every endpoint."""
    return MySQLSchoolStore()


def _academic_year_arg(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"academicYear must be an integer, got {value!r}")


# --- SCHEDULE GENERATION ---

@app.route('/api/schedules/generate', methods=['POST'])
def generate_schedule_route():
    try:
        generation_request = GenerationRequest.from_dict(request.get_json(silent=True))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    store = get_store()
    result = TimetableGenerator(store).generate(generation_request)

    try:
        log_id = store.save_generation_log(generation_request.course_id, generation_request.academic_year, result)
        logger.info(f"Generation for course {generation_request.course_id} logged as {log_id} ({result.status})")
    except mysql.connector.Error as e:
        logger.error(f"Could not save generation log: {e}", exc_info=True)

    return jsonify(result.to_dict()), 200 if result.success else 422


@app.route('/api/schedules/<course_id>/save', methods=['POST'])
def save_schedule_route(course_id):
    data = request.get_json(silent=True) or {}
    try:
        academic_year = _academic_year_arg(data.get('academicYear', data.get('academic_year')))
        blocks = [ScheduleBlock.from_dict(b, course_id=course_id) for b in data.get('blocks') or []]
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    try:
        result = get_store().save_course_schedule(course_id, academic_year, blocks)
    except mysql.connector.Error as e:
        logger.error(f"Error saving schedule for course {course_id}: {e}", exc_info=True)
        return jsonify({'success': False, 'error': str(e)}), 500

    if not result['success']:
        return jsonify(result), 404
    return jsonify(result)


# --- JORNADA ---

@app.route('/api/schools/<school_id>/time_slots')
def get_time_slots(school_id):
    academic_level = request.args.get('academic_level')
    store = get_store()
    try:
        config = store.get_school_day_config(school_id, academic_level)
        level_config = store.get_level_config(school_id, academic_level)
    except mysql.connector.Error as e:
        logger.error(f"Error fetching jornada for school {school_id}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500

    if config is None:
        return jsonify({'error': f"No schedule configuration found for school {school_id}"}), 404

    week = generate_week_slots(config)
    return jsonify({
        'slots': {day: [slot.to_dict() for slot in slots] for day, slots in week.items()},
        'lattice': generate_time_slots_with_breaks(level_config),
        'blocksPerDay': calculate_blocks_for_config(config.start_time, config.end_time, config.block_duration),
    })


@app.route('/api/schedules/<course_id>/compatibility')
def get_schedule_compatibility(course_id):
    try:
        academic_year = _academic_year_arg(request.args.get('academic_year'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    store = get_store()
    try:
        course = store.get_course(course_id)
        if not course:
            return jsonify({'error': f"Course {course_id} not found"}), 404
        schedule = store.get_active_schedule(course_id, academic_year)
        if not schedule:
            return jsonify({'error': f"No active schedule for course {course_id} in {academic_year}"}), 404
        config = store.get_school_day_config(course['school_id'], course.get('academic_level'))
    except mysql.connector.Error as e:
        logger.error(f"Error checking compatibility for course {course_id}: {e}", exc_info=True)
        return jsonify({'error': str(e)}), 500

    if config is None:
        return jsonify({'error': f"No schedule configuration found for school {course['school_id']}"}), 404

    current = {
        'start_time': normalize_time(config.start_time),
        'end_time': normalize_time(config.end_time),
        'block_duration': config.block_duration,
        'academic_level': course.get('academic_level') or '',
    }
    result = check_schedule_compatibility(parse_config_snapshot(schedule.get('config_snapshot')), current)
    result['message'] = get_compatibility_message(result)
    return jsonify(result)


# --- GENERATION LOGS ---

@app.route('/api/generation_logs')
def get_generation_logs():
    status_filter = request.args.get('status')
    limit = request.args.get('limit', 50, type=int)
    try:
        logs = get_store().get_generation_logs(status_filter=status_filter, limit=limit)
    except mysql.connector.Error as e:
        logger.error(f"Error fetching generation logs: {e}")
        return jsonify({'error': str(e)}), 500
    return jsonify(logs)


if __name__ == '__main__':
    if DBConfig.test_connection():
        MySQLSchoolStore().setup_generation_log_table()
    else:
        logger.warning("Database not reachable; generation logs will not be stored")
    app.run(debug=True, host='0.0.0.0', port=5000)
