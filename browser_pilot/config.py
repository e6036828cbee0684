"""Environment-backed configuration for browser_pilot."""

import os
from functools import cache


@cache
def is_running_in_docker() -> bool:
	"""Detect container environments, where browsers must run headless."""
	if os.path.exists('/.dockerenv'):
		return True
	try:
		with open('/proc/1/cgroup') as f:
			return 'docker' in f.read().lower()
	except OSError:
		return False


class _Config:
	"""Reads environment variables on every access so tests can monkeypatch them."""

	@property
	def BROWSER_PILOT_LOGGING_LEVEL(self) -> str:
		return os.getenv('BROWSER_PILOT_LOGGING_LEVEL', 'info').lower()

	@property
	def BROWSER_PILOT_LOG_FILE(self) -> str | None:
		return os.getenv('BROWSER_PILOT_LOG_FILE') or None

	@property
	def BROWSER_PILOT_DEFAULT_MODEL(self) -> str:
		return os.getenv('BROWSER_PILOT_DEFAULT_MODEL', 'gpt-4o')

	@property
	def OPENAI_API_KEY(self) -> str | None:
		return os.getenv('OPENAI_API_KEY') or None

	@property
	def OPENAI_BASE_URL(self) -> str | None:
		return os.getenv('OPENAI_BASE_URL') or None

	@property
	def IN_DOCKER(self) -> bool:
		return os.getenv('IN_DOCKER', 'false').lower() in ('true', 'yes', '1') or is_running_in_docker()


CONFIG = _Config()
