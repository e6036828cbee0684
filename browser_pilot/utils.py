import logging
import time
from collections.abc import Callable, Coroutine
from functools import wraps
from typing import Any, ParamSpec, TypeVar

logger = logging.getLogger(__name__)

P = ParamSpec('P')
R = TypeVar('R')


def time_execution_async(
	additional_text: str = '',
) -> Callable[[Callable[P, Coroutine[Any, Any, R]]], Callable[P, Coroutine[Any, Any, R]]]:
	"""Log the wall-clock duration of an async callable at debug level."""

	def decorator(func: Callable[P, Coroutine[Any, Any, R]]) -> Callable[P, Coroutine[Any, Any, R]]:
		@wraps(func)
		async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
			start_time = time.time()
			try:
				return await func(*args, **kwargs)
			finally:
				execution_time = time.time() - start_time
				logger.debug(f'{additional_text} Execution time: {execution_time:.2f} seconds')

		return wrapper

	return decorator


def extract_json_from_model_output(content: str) -> str:
	"""Strip a surrounding markdown code fence (```json ... ```) from model output."""
	content = content.strip()
	if content.startswith('```'):
		content = content.split('\n', 1)[1] if '\n' in content else ''
		if content.rstrip().endswith('```'):
			content = content.rstrip()[:-3]
	return content.strip()
