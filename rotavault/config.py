import os


def _env_int(name, default):
    value = os.environ.get(name)
    return int(value) if value else default


def _env_bool(name, default='false'):
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes')


def _env_list(name, default):
    value = os.environ.get(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    """Base configuration"""

    # Paths
    DATA_DIR = os.environ.get('DATA_DIR') or '/data'
    BACKUP_DIR = os.environ.get('BACKUP_DIR') or os.path.join(DATA_DIR, 'backups')
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(DATA_DIR, 'logs')

    # Database (run history and optional scheduler checkpoints)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or f'sqlite:///{os.path.join(DATA_DIR, "rotavault.db")}'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Units, in registration order
    BACKUP_UNITS = _env_list('BACKUP_UNITS', ['moodle', 'opensis', 'rosario'])

    # Producer: external command backing up one unit into staging
    PRODUCER_COMMAND = os.environ.get('PRODUCER_COMMAND') or './service-manager.sh backup {unit}'
    PRODUCER_CWD = os.environ.get('PRODUCER_CWD')
    PRODUCER_REPORTS_PATHS = _env_bool('PRODUCER_REPORTS_PATHS', 'true')

    # Retention (number of backups to keep per unit per category)
    DAILY_RETENTION = _env_int('DAILY_RETENTION', 7)
    WEEKLY_RETENTION = _env_int('WEEKLY_RETENTION', 4)
    MONTHLY_RETENTION = _env_int('MONTHLY_RETENTION', 12)
    STAGING_RETENTION = _env_int('STAGING_RETENTION', 2)

    # Trigger windows
    DAILY_HOUR = _env_int('DAILY_HOUR', 1)
    WEEKLY_HOUR = _env_int('WEEKLY_HOUR', 2)
    WEEKLY_WEEKDAY = _env_int('WEEKLY_WEEKDAY', 7)  # ISO weekday, 7 = Sunday
    MONTHLY_HOUR = _env_int('MONTHLY_HOUR', 3)
    MONTHLY_DAY = _env_int('MONTHLY_DAY', 1)

    # Scheduler
    SCHEDULER_TIMEZONE = os.environ.get('SCHEDULER_TIMEZONE') or 'UTC'
    POLL_INTERVAL_SECONDS = _env_int('POLL_INTERVAL_SECONDS', 300)
    SCHEDULER_PID_FILE = os.environ.get('SCHEDULER_PID_FILE') or os.path.join(DATA_DIR, 'backup-scheduler.pid')
    SCHEDULER_LOG_FILE = os.environ.get('SCHEDULER_LOG_FILE') or os.path.join(LOG_DIR, 'backup-scheduler.log')
    CHECKPOINT_ENABLED = _env_bool('CHECKPOINT_ENABLED')
    EMBEDDED_SCHEDULER = _env_bool('EMBEDDED_SCHEDULER')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    BACKUP_DIR = os.environ.get('BACKUP_DIR') or os.path.join(BASE_DIR, 'backups')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "rotavault.db")}'
    SCHEDULER_PID_FILE = os.path.join(DATA_DIR, 'backup-scheduler.pid')
    SCHEDULER_LOG_FILE = os.path.join(LOG_DIR, 'backup-scheduler.log')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration (paths are overridden per test)"""
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    EMBEDDED_SCHEDULER = False
    CHECKPOINT_ENABLED = False
    LOG_TO_FILE = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
