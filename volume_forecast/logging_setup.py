import logging
import logging.handlers
from pathlib import Path
from datetime import datetime

from volume_forecast.config import config

class Logger:
    """Logging manager for the Volume Forecast engine.

    Every named logger writes to its own rotating file under the configured
    log directory (``forecast.log``, ``runs.log`` ...), plus the console when
    ``LOGGING.console_output`` is set.
    """

    _instance = None
    _loggers = {}

    def __new__(cls):
        """Singleton pattern implementation."""
        if cls._instance is None:
            cls._instance = super(Logger, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._settings = config.log_config
        self._log_dir = Path(self._settings['directory'])
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._formatter = logging.Formatter(self._settings['format'])

        logging.getLogger().setLevel(self.level)
        self._initialized = True

    @property
    def level(self):
        return getattr(logging, self._settings['level'].upper(), logging.INFO)

    def _handlers_for(self, name):
        file_handler = logging.handlers.RotatingFileHandler(
            self._log_dir / f"{name}.log",
            maxBytes=self._settings['max_size_mb'] * 1024 * 1024,
            backupCount=self._settings['backup_count']
        )
        handlers = [file_handler]
        if self._settings['console_output']:
            handlers.append(logging.StreamHandler())

        for handler in handlers:
            handler.setFormatter(self._formatter)
        return handlers

    def get_logger(self, name):
        """Get a configured logger.

        Module names are collapsed to their last component, so
        ``volume_forecast.services.forecast_service`` logs to
        ``forecast_service.log``.

        Args:
            name: Logger or module name

        Returns:
            Configured logger instance
        """
        name = name.rsplit('.', 1)[-1]
        if name in self._loggers:
            return self._loggers[name]

        logger = logging.getLogger(f"volume_forecast.{name}")
        logger.setLevel(self.level)
        logger.handlers.clear()
        for handler in self._handlers_for(name):
            logger.addHandler(handler)
        logger.propagate = False

        self._loggers[name] = logger
        return logger

    @property
    def app_logger(self):
        return self.get_logger('app')

    def log_exception(self, logger_name, exception, message=None):
        """Log an error together with the active stack trace."""
        text = f"{message}: {exception}" if message else str(exception)
        self.get_logger(logger_name).error(text, exc_info=exception)

    def run_start_log(self, run_name, scenario_id=None, **context):
        """Log the start of a forecast run.

        Returns:
            Run information to hand back to ``run_end_log``
        """
        run_info = {
            'run_name': run_name,
            'scenario_id': scenario_id,
            'started_at': datetime.now(),
            'context': context
        }

        run_logger = self.get_logger('runs')
        run_logger.info(f"Starting {run_name} for scenario {scenario_id}")
        if context:
            run_logger.info(f"Run context: {context}")
        return run_info

    def run_end_log(self, run_info, success=True, result_info=None):
        """Log the outcome and duration of a run started with ``run_start_log``."""
        run_logger = self.get_logger('runs')
        duration = datetime.now() - run_info.get('started_at', datetime.now())
        label = f"{run_info.get('run_name', 'run')} for scenario {run_info.get('scenario_id')}"

        if success:
            run_logger.info(f"Completed {label} in {duration}")
        else:
            run_logger.error(f"Failed {label} after {duration}")

        if result_info:
            run_logger.info(f"Run results: {result_info}")

# Global logger instance
logger = Logger()

def get_logger(name):
    return logger.get_logger(name)
