# PassDesk Event Pass System Configuration

import os
import tempfile
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.absolute()

# Scratch area for the testing configuration
_scratch_dir = Path(tempfile.gettempdir()) / 'passdesk-test'


def _env_flag(name, default='false'):
    return os.environ.get(name, default).lower() in ['true', 'on', '1']


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'passdesk-secret-key-change-me'

    # Database Configuration
    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'passdesk.db')
    DATABASE_QUERY_TIMEOUT = float(os.environ.get('DATABASE_QUERY_TIMEOUT') or 30)

    # Storage Configuration
    QR_CODES_FOLDER = BASE_DIR / 'static' / 'qr_codes'
    REPORTS_FOLDER = BASE_DIR / 'reports'
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB max upload
    SAVE_QR_IMAGES = _env_flag('SAVE_QR_IMAGES')

    # QR Code Configuration
    QR_CODE_BOX_SIZE = 12
    QR_CODE_BORDER = 2
    QR_CODE_ERROR_CORRECT = 'H'  # ~30% error correction, survives phone screens

    # Event Configuration
    EVENT_NAME = os.environ.get('EVENT_NAME') or 'Farewell'

    # Email Configuration
    MAIL_SERVER = os.environ.get('MAIL_SERVER') or 'smtp.gmail.com'
    MAIL_PORT = int(os.environ.get('MAIL_PORT') or 587)
    MAIL_USE_TLS = _env_flag('MAIL_USE_TLS', 'true')
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER') or 'noreply@passdesk.local'
    MAIL_TIMEOUT = 30  # seconds
    MAIL_SUPPRESS_SEND = _env_flag('MAIL_SUPPRESS_SEND')

    # Duplicate detection
    DUPLICATE_CHECK_WITHIN_BATCH = _env_flag('DUPLICATE_CHECK_WITHIN_BATCH', 'true')

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FORMAT = '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
    LOG_FILE = BASE_DIR / 'logs' / 'passdesk.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    # Development Configuration
    DEBUG = _env_flag('DEBUG')
    TESTING = False

    @classmethod
    def init_app(cls, app):
        """Initialize application configuration"""
        # Create necessary directories
        directories = [
            cls.QR_CODES_FOLDER,
            cls.REPORTS_FOLDER,
            cls.DATABASE_PATH.parent,
            cls.LOG_FILE.parent
        ]

        for directory in directories:
            Path(directory).mkdir(parents=True, exist_ok=True)

        # Set Flask configuration
        app.config.from_object(cls)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False

    DATABASE_PATH = BASE_DIR / 'database' / 'passdesk_dev.db'

    # More verbose logging
    LOG_LEVEL = 'DEBUG'

    # Email configuration for development (MailHog)
    MAIL_SERVER = 'localhost'
    MAIL_PORT = 1025
    MAIL_USE_TLS = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    DATABASE_PATH = _scratch_dir / 'passdesk_test.db'
    QR_CODES_FOLDER = _scratch_dir / 'qr_codes'
    REPORTS_FOLDER = _scratch_dir / 'reports'
    LOG_FILE = _scratch_dir / 'logs' / 'passdesk.log'
    DATABASE_QUERY_TIMEOUT = 10

    # Keep outgoing mail in memory
    MAIL_SUPPRESS_SEND = True
    MAIL_USERNAME = 'passes@test.local'
    MAIL_DEFAULT_SENDER = 'passes@test.local'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'passdesk_prod.db')

    # Production logging
    LOG_LEVEL = 'WARNING'

    @classmethod
    def init_app(cls, app):
        super().init_app(app)

        # Production-specific initialization
        import logging
        from logging.handlers import RotatingFileHandler

        # Setup file logging
        if not app.debug:
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(cls.LOG_FORMAT))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('PassDesk startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name=None):
    """Get configuration based on name or environment variable"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')
    return config.get(config_name, DevelopmentConfig)


def validate_config(config_class):
    """Validate configuration settings"""
    errors = []

    if not Path(config_class.DATABASE_PATH).parent.exists():
        errors.append(f"Database directory does not exist: {Path(config_class.DATABASE_PATH).parent}")

    # Real delivery needs credentials
    if not config_class.MAIL_SUPPRESS_SEND:
        if not config_class.MAIL_SERVER:
            errors.append("MAIL_SERVER is required when email sending is enabled")

    if config_class.QR_CODE_ERROR_CORRECT not in ('L', 'M', 'Q', 'H'):
        errors.append(f"Unknown QR error correction level: {config_class.QR_CODE_ERROR_CORRECT}")

    return errors


def init_config(app, config_name=None):
    """Initialize application with configuration"""
    config_class = get_config(config_name)
    config_class.init_app(app)

    # Validate configuration
    errors = validate_config(config_class)
    if errors:
        for error in errors:
            app.logger.error(f"Configuration error: {error}")
        raise RuntimeError("Configuration validation failed")

    return config_class
