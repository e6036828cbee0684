"""LLM-driven browser automation agent."""

from browser_pilot.logging_config import setup_logging

setup_logging()

from browser_pilot.agent.service import Agent  # noqa: E402
from browser_pilot.agent.views import ActionResult, AgentHistory, AgentHistoryList, AgentOutput, AgentSettings  # noqa: E402
from browser_pilot.browser import BrowserContext, BrowserContextConfig, DriverConfig, SeleniumDriver  # noqa: E402
from browser_pilot.controller.registry.views import ActionModel  # noqa: E402
from browser_pilot.controller.service import Controller  # noqa: E402
from browser_pilot.dom.service import DomService  # noqa: E402
from browser_pilot.exceptions import (  # noqa: E402
	ActionValidationError,
	AgentInterruptedError,
	BrowserError,
	BrowserPilotError,
	ContextOverflowError,
	ElementNotFoundError,
	NavigationBlockedError,
	OutputParseError,
	RateLimitedError,
	TokenLimitExceededError,
)
from browser_pilot.llm import ChatOpenAI  # noqa: E402
from browser_pilot.telemetry import EventBusTelemetry, NoopTelemetry  # noqa: E402

__all__ = [
	'ActionModel',
	'ActionResult',
	'ActionValidationError',
	'Agent',
	'AgentHistory',
	'AgentHistoryList',
	'AgentInterruptedError',
	'AgentOutput',
	'AgentSettings',
	'BrowserContext',
	'BrowserContextConfig',
	'BrowserError',
	'BrowserPilotError',
	'ChatOpenAI',
	'ContextOverflowError',
	'Controller',
	'DomService',
	'DriverConfig',
	'ElementNotFoundError',
	'EventBusTelemetry',
	'NavigationBlockedError',
	'NoopTelemetry',
	'OutputParseError',
	'RateLimitedError',
	'SeleniumDriver',
	'TokenLimitExceededError',
]
