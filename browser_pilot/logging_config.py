import logging
import sys
from pathlib import Path

from browser_pilot.config import CONFIG

RESULT_LEVEL = 35

_NOISY_LOGGERS = ('selenium', 'urllib3', 'httpx', 'httpcore', 'openai', 'bubus', 'asyncio')


def addLoggingLevel(levelName: str, levelNum: int, methodName: str | None = None) -> None:
	"""Register a new level on the logging module and on Logger instances."""
	if not methodName:
		methodName = levelName.lower()

	if hasattr(logging, levelName) or hasattr(logging.getLoggerClass(), methodName):
		return

	def logForLevel(self, message, *args, **kwargs):
		if self.isEnabledFor(levelNum):
			self._log(levelNum, message, args, **kwargs)

	def logToRoot(message, *args, **kwargs):
		logging.log(levelNum, message, *args, **kwargs)

	logging.addLevelName(levelNum, levelName)
	setattr(logging, levelName, levelNum)
	setattr(logging.getLoggerClass(), methodName, logForLevel)
	setattr(logging, methodName, logToRoot)


class BrowserPilotFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:
		if isinstance(record.name, str) and record.name.startswith('browser_pilot.'):
			record.name = record.name.split('.')[-1]
		return super().format(record)


def setup_logging(log_level: str | None = None, force: bool = False) -> logging.Logger:
	"""Configure the browser_pilot logger once; later calls are no-ops unless forced."""
	addLoggingLevel('RESULT', RESULT_LEVEL)

	logger = logging.getLogger('browser_pilot')
	if logger.handlers and not force:
		return logger
	for handler in list(logger.handlers):
		logger.removeHandler(handler)

	level_name = (log_level or CONFIG.BROWSER_PILOT_LOGGING_LEVEL).lower()
	if level_name == 'result':
		level = RESULT_LEVEL
		formatter = BrowserPilotFormatter('%(message)s')
	else:
		level = logging.DEBUG if level_name == 'debug' else logging.INFO
		formatter = BrowserPilotFormatter('%(levelname)-8s [%(name)s] %(message)s')

	console = logging.StreamHandler(sys.stdout)
	console.setFormatter(formatter)
	logger.addHandler(console)

	log_file = CONFIG.BROWSER_PILOT_LOG_FILE
	if log_file:
		Path(log_file).parent.mkdir(parents=True, exist_ok=True)
		file_handler = logging.FileHandler(log_file, encoding='utf-8')
		file_handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)-8s [%(name)s] %(message)s'))
		logger.addHandler(file_handler)

	logger.setLevel(level)
	logger.propagate = False

	for name in _NOISY_LOGGERS:
		logging.getLogger(name).setLevel(logging.WARNING)

	return logger
