import os
import logging
import atexit
from logging.handlers import RotatingFileHandler
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager


# Initialize extensions
db = SQLAlchemy()
login_manager = LoginManager()


def configure_logging(app):
    """Configure application logging"""

    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'bankvault.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler], force=True)

    # Configure Flask app logger
    app.logger.setLevel(log_level)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None, test_config=None):
    """
    Flask application factory.

    Args:
        config_name: Key into bankvault.config.config (defaults to FLASK_ENV)
        test_config: Optional mapping applied on top of the config class,
            before anything reads the configuration
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from bankvault.config import config
    app.config.from_object(config[config_name])
    if test_config:
        app.config.update(test_config)

    # Configure logging
    configure_logging(app)

    # Ensure required directories exist
    os.makedirs(app.config['BACKUP_DIR'], exist_ok=True)
    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    if database_uri.startswith('sqlite:///') and ':memory:' not in database_uri:
        os.makedirs(os.path.dirname(database_uri.replace('sqlite:///', '')) or '.', exist_ok=True)

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)

    # Backup routes authenticate per request with an API token
    from bankvault.auth import load_operator_from_request
    login_manager.request_loader(load_operator_from_request)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required'}), 401

    # Register blueprints
    from bankvault.routes import backup_routes
    app.register_blueprint(backup_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    # Create live store tables
    from bankvault import models
    with app.app_context():
        db.create_all()

    # Backup service (one per process)
    from bankvault.backup.service import init_backup_service
    service = init_backup_service(app)

    # Initialize and start scheduler (only in the designated process)
    is_reloader_child = os.environ.get('WERKZEUG_RUN_MAIN') == 'true'
    is_development = app.config.get('DEBUG', False)

    # Scheduler initialization logic:
    # - Development mode: Only in Flask reloader child process (not parent)
    # - Otherwise: controlled by BACKUP_SCHEDULER_ENABLED
    should_init_scheduler = app.config.get('BACKUP_SCHEDULER_ENABLED', True)
    if is_development:
        should_init_scheduler = should_init_scheduler and is_reloader_child
        app.logger.info(f"Development mode: is_reloader_child={is_reloader_child}")

    if should_init_scheduler:
        from bankvault.scheduler import BackupScheduler

        backup_scheduler = BackupScheduler(
            service,
            tz=app.config.get('SCHEDULER_TIMEZONE', 'UTC'),
            backup_hour=app.config.get('BACKUP_SCHEDULE_HOUR', 2),
            retention_hour=app.config.get('BACKUP_RETENTION_HOUR', 3)
        )
        try:
            backup_scheduler.init()
            backup_scheduler.start()
            # Register cleanup function to stop scheduler on app shutdown
            atexit.register(backup_scheduler.stop)
            app.logger.info("Scheduler initialized and started successfully")
        except Exception as e:
            app.logger.error(f"Failed to start backup scheduler, scheduled backups disabled: {e}")
    else:
        app.logger.info("Scheduler initialization skipped in this process")

    return app
