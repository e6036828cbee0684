"""Browser session layer: a Selenium driver wrapper and the context the agent acts on."""

from browser_pilot.browser.context import BrowserContext, BrowserContextConfig
from browser_pilot.browser.driver import DriverConfig, DriverTabInfo, SeleniumDriver
from browser_pilot.browser.views import BrowserState, BrowserStateHistory, TabInfo

__all__ = [
	'BrowserContext',
	'BrowserContextConfig',
	'BrowserState',
	'BrowserStateHistory',
	'DriverConfig',
	'DriverTabInfo',
	'SeleniumDriver',
	'TabInfo',
]
