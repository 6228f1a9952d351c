import logging
import os

import mysql.connector
from mysql.connector import Error

logger = logging.getLogger(__name__)


def _env(name, default):
    return os.environ.get(f"TIMETABLE_{name}", default)


class DBConfig:
    """
    Centralized database configuration and connection management for the application.
    """
    # Database credentials and configuration
    DB_HOST = _env('DB_HOST', 'localhost')
    DB_USER = _env('DB_USER', 'root')
    DB_PASSWORD = _env('DB_PASSWORD', '')
    DB_NAME = _env('DB_NAME', 'horarios')
    DB_PORT = int(_env('DB_PORT', '3306'))

    # Application secret key
    SECRET_KEY = _env('SECRET_KEY', 'school_timetable_secret_key')

    @staticmethod
    def get_connection():
        """
        Establishes and returns a database connection.
        Returns None when the server cannot be reached.
        """
        try:
            conn = mysql.connector.connect(
                host=DBConfig.DB_HOST,
                user=DBConfig.DB_USER,
                password=DBConfig.DB_PASSWORD,
                database=DBConfig.DB_NAME,
                port=DBConfig.DB_PORT,
                autocommit=False,
                charset='utf8mb4',
                collation='utf8mb4_unicode_ci'
            )
            if conn.is_connected():
                return conn
            logger.error("Failed to establish database connection")
            return None
        except Error as e:
            logger.error(f"Error while connecting to MySQL: {e}")
            return None

    @staticmethod
    def test_connection():
        """
        Tests the database connection and returns True if successful, False otherwise.
        """
        conn = DBConfig.get_connection()
        if conn and conn.is_connected():
            try:
                cursor = conn.cursor()
                cursor.execute("SELECT 1")
                cursor.fetchone()
                cursor.close()
                return True
            except Error as e:
                logger.error(f"Connection test failed: {e}")
                return False
            finally:
                conn.close()
        return False


class GenerationDefaults:
    """Constants used by the schedule generator when a request does not override them."""
    DAYS = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday']
    WEEK = DAYS + ['Saturday', 'Sunday']

    # Hard caps applied per day during the greedy pass
    MAX_SUBJECT_BLOCKS_PER_DAY = 2
    MAX_TEACHER_BLOCKS_PER_DAY = 4

    # priority = remaining hours * PRIORITY_WEIGHT - blocks already on that day
    PRIORITY_WEIGHT = 10

    PRIORITY_STRATEGIES = ('static', 'dynamic')

    # Safety stop for the display lattice
    MAX_BLOCKS_PER_LATTICE = 20

    # Default jornada per academic level, used when a school has not configured one
    LEVEL_CONFIGS = {
        'BASIC': {
            'start_time': '08:00',
            'end_time': '17:00',
            'block_duration': 45,
            'break_duration': 0,
            'breaks': [
                {'after_block': 2, 'duration': 15, 'name': 'Recess'},
                {'after_block': 4, 'duration': 15, 'name': 'Recess'},
                {'after_block': 6, 'duration': 45, 'name': 'Lunch'},
            ],
        },
        'MIDDLE': {
            'start_time': '08:00',
            'end_time': '18:00',
            'block_duration': 90,
            'break_duration': 0,
            'breaks': [
                {'after_block': 2, 'duration': 15, 'name': 'Recess'},
                {'after_block': 4, 'duration': 45, 'name': 'Lunch'},
                {'after_block': 6, 'duration': 15, 'name': 'Recess'},
            ],
        },
    }
    DEFAULT_ACADEMIC_LEVEL = 'BASIC'
