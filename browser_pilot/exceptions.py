"""Error taxonomy shared by the agent, controller and browser layers."""


class BrowserPilotError(Exception):
	"""Base class for all errors raised by browser_pilot."""


class OutputValidationError(BrowserPilotError, ValueError):
	"""The model's decision failed schema validation or JSON parsing."""


class TokenLimitExceededError(OutputValidationError):
	"""The model transport rejected the prompt for exceeding its context window."""

	def __init__(self, message: str = 'Max token limit reached'):
		if 'Max token limit reached' not in message:
			message = f'Max token limit reached: {message}'
		super().__init__(message)


class OutputParseError(OutputValidationError):
	"""The model answered, but the answer could not be parsed into the decision schema."""

	def __init__(self, message: str = 'Could not parse response'):
		if 'Could not parse response' not in message:
			message = f'Could not parse response: {message}'
		super().__init__(message)


class ActionValidationError(OutputValidationError):
	"""Parameters for a registered action did not match its schema."""


class ContextOverflowError(BrowserPilotError):
	"""A single message is too large to fit into the token budget even after truncation."""


class RateLimitedError(BrowserPilotError):
	"""The model transport signalled backpressure."""


class BrowserError(BrowserPilotError):
	"""Generic browser driver failure."""

	def __init__(self, message: str, long_term_memory: str | None = None):
		super().__init__(message)
		self.message = message
		self.long_term_memory = long_term_memory


class NavigationBlockedError(BrowserError):
	"""Navigation to a URL outside the configured allow-list."""


class ElementNotFoundError(BrowserError):
	"""An element index, or a replayed historical element, is missing from the current page."""


class AgentInterruptedError(BrowserPilotError):
	"""Cooperative cancellation: the agent was paused or stopped at a checkpoint."""


class ModelProviderError(BrowserPilotError):
	"""The model provider failed for a reason other than rate limiting or context length."""

	def __init__(self, message: str, status_code: int | None = None, model: str | None = None):
		super().__init__(message)
		self.message = message
		self.status_code = status_code
		self.model = model
