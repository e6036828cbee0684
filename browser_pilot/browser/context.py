"""Browser context: observation, navigation guard and element interaction over SeleniumDriver."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, cast
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, validate_call
from uuid_extensions import uuid7str

from browser_pilot.browser.driver import DriverConfig, SeleniumDriver
from browser_pilot.browser.views import BrowserState, TabInfo
from browser_pilot.dom.service import HIGHLIGHT_CONTAINER_ID, DomService
from browser_pilot.dom.views import DOMElementNode, SelectorMap
from browser_pilot.exceptions import BrowserError, ElementNotFoundError, NavigationBlockedError
from browser_pilot.utils import time_execution_async

_ALWAYS_ALLOWED_URLS = ('about:blank', 'chrome://new-tab-page/', 'chrome://newtab/')

_RESOURCE_COUNT_SCRIPT = "return performance.getEntriesByType('resource').length;"

_DROPDOWN_OPTIONS_SCRIPT = """
const element = document.evaluate(arguments[0], document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null).singleNodeValue;
if (!element) return { error: 'Dropdown element not found' };
if (element.tagName.toLowerCase() !== 'select') {
	return { error: `Element is a ${element.tagName.toLowerCase()}, not a select` };
}
return {
	id: element.id || '',
	name: element.name || '',
	options: Array.from(element.options).map((option, index) => ({
		index,
		text: option.text,
		value: option.value,
		selected: option.selected,
	})),
};
"""

_SELECT_OPTION_SCRIPT = """
const element = document.evaluate(arguments[0], document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null).singleNodeValue;
if (!element) return { error: 'Dropdown element not found' };
if (element.tagName.toLowerCase() !== 'select') {
	return { error: `Element is a ${element.tagName.toLowerCase()}, not a select` };
}
const wanted = String(arguments[1]).trim();
const option = Array.from(element.options).find((candidate) => candidate.text.trim() === wanted || candidate.value === wanted);
if (!option) return { error: `Option "${wanted}" not found` };
element.value = option.value;
element.dispatchEvent(new Event('input', { bubbles: true }));
element.dispatchEvent(new Event('change', { bubbles: true }));
return { value: option.value, text: option.text };
"""

_SCROLL_TO_TEXT_SCRIPT = """
const wanted = String(arguments[0]).toLowerCase();
const walker = document.createTreeWalker(document.body, NodeFilter.SHOW_TEXT);
while (walker.nextNode()) {
	const node = walker.currentNode;
	if ((node.textContent || '').toLowerCase().includes(wanted) && node.parentElement) {
		node.parentElement.scrollIntoView({ behavior: 'auto', block: 'center' });
		return true;
	}
}
return false;
"""


class BrowserContextConfig(BaseModel):
	"""Timing, navigation guard and observation settings for a BrowserContext."""

	model_config = ConfigDict(extra='forbid')

	minimum_wait_page_load_time: float = Field(default=0.5, ge=0)
	wait_for_network_idle_page_load_time: float = Field(default=1.0, ge=0)
	maximum_wait_page_load_time: float = Field(default=5.0, ge=0)
	wait_between_actions: float = Field(default=1.0, ge=0)
	allowed_domains: list[str] | None = None
	viewport_expansion: int = 500
	highlight_elements: bool = True
	take_screenshots: bool = True
	start_timeout: float = Field(default=60.0, gt=0)


class BrowserContext(BaseModel):
	"""The single browser session an agent acts on."""

	model_config = ConfigDict(
		arbitrary_types_allowed=True, extra='forbid', validate_assignment=True, revalidate_instances='never'
	)

	id: str = Field(default_factory=uuid7str)
	config: BrowserContextConfig = Field(default_factory=BrowserContextConfig)
	driver: SeleniumDriver = Field(default_factory=SeleniumDriver)

	_cached_state: BrowserState | None = PrivateAttr(default=None)
	_dom_service: DomService | None = PrivateAttr(default=None)
	_state_lock: asyncio.Lock = PrivateAttr(default_factory=asyncio.Lock)

	@classmethod
	def from_config(cls, driver_config: DriverConfig, config: BrowserContextConfig | None = None) -> BrowserContext:
		return cls(driver=SeleniumDriver(config=driver_config), config=config or BrowserContextConfig())

	@property
	def logger(self) -> logging.Logger:
		return logging.getLogger(f'browser_pilot.BrowserContext🅑 {self.id[-4:]}')

	@property
	def dom_service(self) -> DomService:
		if self._dom_service is None:
			self._dom_service = DomService(self.driver)
		return self._dom_service

	@property
	def cached_state(self) -> BrowserState | None:
		return self._cached_state

	async def start(self) -> None:
		if self.driver.is_started:
			return
		await asyncio.wait_for(self.driver.start(), timeout=self.config.start_timeout)
		self.logger.debug(f'Started {self.driver.config.browser} session')

	async def close(self) -> None:
		self._cached_state = None
		await self.driver.close()

	async def __aenter__(self) -> BrowserContext:
		await self.start()
		return self

	async def __aexit__(self, exc_type, exc, tb) -> None:
		await self.close()

	async def _with_retry(self, operation_name: str, operation, retries: int = 2, check_driver_alive: bool = True) -> Any:
		last_error: Exception | None = None
		for attempt in range(retries + 1):
			try:
				if check_driver_alive and not await self.driver.is_alive():
					raise RuntimeError('WebDriver session is not alive')
				return await operation()
			except NavigationBlockedError:
				raise
			except Exception as exc:  # noqa: PERF203
				last_error = exc
				if attempt == retries:
					break
				await asyncio.sleep(0.15 * (2**attempt))
		raise BrowserError(
			message=f'{operation_name} failed: {last_error}',
			long_term_memory=f'{operation_name} failed in the browser session. Refresh state and retry.',
		)

	# Navigation guard ------------------------------------------------------

	def _is_url_allowed(self, url: str) -> bool:
		"""Allow the exact domain and any of its subdomains."""
		if not self.config.allowed_domains:
			return True
		if url in _ALWAYS_ALLOWED_URLS:
			return True

		host = (urlparse(url).hostname or '').lower()
		if not host:
			return False
		for allowed_domain in self.config.allowed_domains:
			domain = allowed_domain.lower()
			if host == domain or host.endswith('.' + domain):
				return True
		return False

	async def _check_and_handle_navigation(self) -> None:
		url = await self.driver.get_url()
		if self._is_url_allowed(url):
			return
		self.logger.warning(f'⛔️ Navigation to non-allowed URL detected: {url}')
		try:
			await self.driver.go_back()
		except Exception as exc:
			self.logger.error(f'Failed to go back after detecting non-allowed URL: {exc}')
		raise NavigationBlockedError(
			message=f'Navigation to non-allowed URL: {url}',
			long_term_memory=f'{url} is outside the allowed domains. Stay on the allowed sites.',
		)

	# Waiting ---------------------------------------------------------------

	async def _wait_for_stable_network(self) -> None:
		"""Wait for readyState=complete, then for the resource count to stop growing."""
		loop = asyncio.get_running_loop()
		deadline = loop.time() + self.config.maximum_wait_page_load_time
		await self.driver.wait_for_ready_state(timeout_seconds=self.config.maximum_wait_page_load_time)

		idle_window = self.config.wait_for_network_idle_page_load_time
		last_count = await self.driver.execute_js(_RESOURCE_COUNT_SCRIPT)
		idle_since = loop.time()
		while loop.time() < deadline:
			if loop.time() - idle_since >= idle_window:
				return
			await asyncio.sleep(0.1)
			count = await self.driver.execute_js(_RESOURCE_COUNT_SCRIPT)
			if count != last_count:
				last_count = count
				idle_since = loop.time()
		self.logger.debug('Network did not become idle before the maximum page load wait, continuing')

	async def _wait_for_page_and_frames_load(self, timeout_overwrite: float | None = None) -> None:
		"""Bounded load wait that degrades to proceeding, followed by the allowed-domain check."""
		loop = asyncio.get_running_loop()
		start_time = loop.time()
		try:
			await self._wait_for_stable_network()
		except Exception as exc:
			self.logger.warning(f'Page load wait failed, continuing anyway: {type(exc).__name__}: {exc}')

		await self._check_and_handle_navigation()

		elapsed = loop.time() - start_time
		minimum_wait = timeout_overwrite if timeout_overwrite is not None else self.config.minimum_wait_page_load_time
		remaining = max(minimum_wait - elapsed, 0)
		if remaining > 0:
			await asyncio.sleep(remaining)

	# Observation -----------------------------------------------------------

	@time_execution_async('--get_state')
	async def get_state(self) -> BrowserState:
		"""Capture a fresh snapshot and make it the cached state."""
		await self.start()
		async with self._state_lock:
			await self._wait_for_page_and_frames_load()
			state = cast(BrowserState, await self._with_retry('get_state', self._update_state))
			self._cached_state = state
			return state

	async def _update_state(self, focus_element: int = -1) -> BrowserState:
		await self.remove_highlights()
		dom_state = await self.dom_service.get_clickable_elements(
			highlight_elements=self.config.highlight_elements,
			focus_element=focus_element,
			viewport_expansion=self.config.viewport_expansion,
		)
		screenshot = await self.take_screenshot() if self.config.take_screenshots else None
		pixels_above, pixels_below = await self.dom_service.get_scroll_info()
		return BrowserState(
			element_tree=dom_state.element_tree,
			selector_map=dom_state.selector_map,
			url=await self.driver.get_url(),
			title=await self.driver.get_title(),
			tabs=await self.get_tabs_info(),
			screenshot=screenshot,
			pixels_above=pixels_above,
			pixels_below=pixels_below,
		)

	async def take_screenshot(self) -> str | None:
		try:
			return await self.driver.screenshot()
		except Exception as exc:
			self.logger.warning(f'Screenshot failed, continuing without one: {type(exc).__name__}: {exc}')
			return None

	async def remove_highlights(self) -> None:
		try:
			await self.driver.execute_js(
				'const container = document.getElementById(arguments[0]); if (container) container.remove();',
				HIGHLIGHT_CONTAINER_ID,
			)
		except Exception as exc:
			self.logger.debug(f'Failed to remove highlights (this is usually ok): {exc}')

	async def get_selector_map(self) -> SelectorMap:
		if self._cached_state is None:
			return {}
		return self._cached_state.selector_map

	async def get_dom_element_by_index(self, index: int) -> DOMElementNode:
		selector_map = await self.get_selector_map()
		if index not in selector_map:
			raise ElementNotFoundError(
				message=f'Element with index {index} does not exist - retry or use alternative actions',
				long_term_memory=f'Element {index} is not on the current page.',
			)
		return selector_map[index]

	# Navigation ------------------------------------------------------------

	@validate_call
	async def navigate_to(self, url: str) -> None:
		if not self._is_url_allowed(url):
			raise NavigationBlockedError(
				message=f'Navigation to non-allowed URL: {url}',
				long_term_memory=f'{url} is outside the allowed domains.',
			)

		async def _navigate() -> None:
			await self.driver.navigate(url)
			await self._wait_for_page_and_frames_load()

		await self._with_retry('navigate_to', _navigate)

	async def go_back(self) -> None:
		async def _go_back() -> None:
			await self.driver.go_back()
			await self._wait_for_page_and_frames_load()

		await self._with_retry('go_back', _go_back)

	# Element interaction ---------------------------------------------------

	@staticmethod
	def _xpath_selector(element_node: DOMElementNode) -> str:
		return element_node.xpath if element_node.xpath.startswith('/') else f'/{element_node.xpath}'

	async def click_element_node(self, element_node: DOMElementNode) -> None:
		async def _click() -> None:
			await self.driver.click_selector(self._xpath_selector(element_node), by='xpath')
			await self._wait_for_page_and_frames_load()

		await self._with_retry(f'click_element_node[{element_node.highlight_index}]', _click, retries=1)

	async def input_text_element_node(self, element_node: DOMElementNode, text: str) -> None:
		async def _type() -> None:
			await self.driver.type_into(self._xpath_selector(element_node), text, by='xpath')
			await self._wait_for_page_and_frames_load()

		await self._with_retry(f'input_text_element_node[{element_node.highlight_index}]', _type, retries=1)

	async def get_dropdown_options(self, element_node: DOMElementNode) -> dict[str, Any]:
		result = await self.driver.execute_js(_DROPDOWN_OPTIONS_SCRIPT, self._xpath_selector(element_node))
		if not isinstance(result, dict):
			raise BrowserError(message='Invalid dropdown data returned from page')
		return result

	async def select_dropdown_option(self, element_node: DOMElementNode, text: str) -> dict[str, Any]:
		result = await self.driver.execute_js(_SELECT_OPTION_SCRIPT, self._xpath_selector(element_node), text)
		if not isinstance(result, dict):
			raise BrowserError(message='Invalid dropdown selection result returned from page')
		return result

	# Page helpers ----------------------------------------------------------

	async def get_page_html(self) -> str:
		return await self._with_retry('get_page_html', self.driver.get_page_source, retries=1, check_driver_alive=False)

	async def scroll(self, direction: str, amount: int | None = None) -> None:
		await self.driver.scroll(direction, amount)

	async def scroll_to_text(self, text: str) -> bool:
		return bool(await self.driver.execute_js(_SCROLL_TO_TEXT_SCRIPT, text))

	async def send_keys(self, keys: str) -> None:
		await self.driver.send_keys(keys)

	# Tabs ------------------------------------------------------------------

	async def get_tabs_info(self) -> list[TabInfo]:
		tabs = await self.driver.list_tabs()
		return [TabInfo(page_id=tab.index, url=tab.url, title=tab.title) for tab in tabs]

	async def switch_to_tab(self, page_id: int) -> None:
		tabs = await self.driver.list_tabs()
		if page_id < 0:
			page_id = len(tabs) + page_id
		if page_id < 0 or page_id >= len(tabs):
			raise BrowserError(message=f'No tab found with page_id: {page_id}')
		if not self._is_url_allowed(tabs[page_id].url):
			raise NavigationBlockedError(message=f'Cannot switch to tab with non-allowed URL: {tabs[page_id].url}')

		await self.driver.switch_tab(page_id)
		await self._wait_for_page_and_frames_load()

	async def create_new_tab(self, url: str | None = None) -> None:
		if url and not self._is_url_allowed(url):
			raise NavigationBlockedError(message=f'Cannot create new tab with non-allowed URL: {url}')

		await self.driver.new_tab(url or 'about:blank')
		await self._wait_for_page_and_frames_load()

	async def close_tab(self, page_id: int | None = None) -> None:
		"""Close the tab at page_id (or the current one) and focus a remaining tab."""
		await self.driver.close_tab(page_id)
