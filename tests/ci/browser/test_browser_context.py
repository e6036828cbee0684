"""Unit tests for BrowserContext observation and navigation guard."""

from __future__ import annotations

from typing import Any

import pytest

from browser_pilot.browser.context import BrowserContext, BrowserContextConfig
from browser_pilot.browser.driver import DriverTabInfo, SeleniumDriver
from browser_pilot.dom.service import DOM_WALKER_SCRIPT, SCROLL_INFO_SCRIPT
from browser_pilot.exceptions import BrowserError, ElementNotFoundError, NavigationBlockedError

_WALKER_PAYLOAD = {
	'rootId': '0',
	'map': {
		'0': {'tagName': 'body', 'xpath': 'html/body', 'children': ['1'], 'isVisible': True},
		'1': {
			'tagName': 'a',
			'xpath': 'html/body/a',
			'attributes': {'href': '/next'},
			'children': ['2'],
			'isVisible': True,
			'isInteractive': True,
			'highlightIndex': 0,
		},
		'2': {'type': 'TEXT_NODE', 'text': 'Next', 'isVisible': True},
	},
}


class _FakeSeleniumDriver(SeleniumDriver):
	"""SeleniumDriver with the WebDriver calls answered in memory."""

	def __init__(self) -> None:
		super().__init__()
		self._driver = object()
		self.tabs = [
			DriverTabInfo(index=0, handle='h1', url='https://example.com/', title='Example'),
			DriverTabInfo(index=1, handle='h2', url='https://docs.example.com/', title='Docs'),
		]
		self.active = 0
		self.redirects: dict[str, str] = {}
		self.calls: list[str] = []
		self.page_source_error: Exception | None = None

	async def is_alive(self) -> bool:
		return True

	async def wait_for_ready_state(self, timeout_seconds: float = 15.0) -> str:
		return 'complete'

	async def execute_js(self, expression: str, *args: Any) -> Any:
		if expression == DOM_WALKER_SCRIPT:
			return _WALKER_PAYLOAD
		if expression == SCROLL_INFO_SCRIPT:
			return {'scrollY': 0, 'innerHeight': 800, 'scrollHeight': 1200}
		return 0

	async def screenshot(self) -> str:
		return 'base64-screenshot'

	async def get_url(self) -> str:
		return self.tabs[self.active].url

	async def get_title(self) -> str:
		return self.tabs[self.active].title

	async def navigate(self, url: str) -> str:
		self.calls.append(f'navigate:{url}')
		final_url = self.redirects.get(url, url)
		self.tabs[self.active] = self.tabs[self.active].model_copy(update={'url': final_url})
		return final_url

	async def go_back(self) -> None:
		self.calls.append('go_back')
		self.tabs[self.active] = self.tabs[self.active].model_copy(update={'url': 'https://example.com/'})

	async def list_tabs(self) -> list[DriverTabInfo]:
		return list(self.tabs)

	async def switch_tab(self, index: int) -> DriverTabInfo:
		self.calls.append(f'switch_tab:{index}')
		self.active = index
		return self.tabs[index]

	async def get_page_source(self) -> str:
		if self.page_source_error:
			raise self.page_source_error
		return '<html></html>'


def _context(**config: Any) -> tuple[BrowserContext, _FakeSeleniumDriver]:
	driver = _FakeSeleniumDriver()
	context = BrowserContext(
		driver=driver,
		config=BrowserContextConfig(
			minimum_wait_page_load_time=0,
			wait_for_network_idle_page_load_time=0,
			maximum_wait_page_load_time=0.2,
			wait_between_actions=0,
			**config,
		),
	)
	return context, driver


@pytest.mark.parametrize(
	('url', 'allowed'),
	[
		('https://example.com/page', True),
		('https://sub.example.com/page', True),
		('https://EXAMPLE.com', True),
		('https://notexample.com', False),
		('https://example.com.evil.org', False),
		('about:blank', True),
		('not a url', False),
	],
)
def test_is_url_allowed_matches_domain_and_subdomains(url: str, allowed: bool) -> None:
	context, _ = _context(allowed_domains=['example.com'])
	assert context._is_url_allowed(url) is allowed


def test_is_url_allowed_without_allow_list() -> None:
	context, _ = _context()
	assert context._is_url_allowed('https://anything.test') is True


@pytest.mark.asyncio
async def test_navigate_to_blocks_urls_outside_allowed_domains() -> None:
	context, driver = _context(allowed_domains=['example.com'])

	with pytest.raises(NavigationBlockedError, match='non-allowed URL'):
		await context.navigate_to('https://evil.test/')

	assert driver.calls == []


@pytest.mark.asyncio
async def test_redirect_to_disallowed_domain_goes_back_and_raises() -> None:
	context, driver = _context(allowed_domains=['example.com'])
	driver.redirects['https://example.com/out'] = 'https://evil.test/landing'

	with pytest.raises(NavigationBlockedError) as exc_info:
		await context.navigate_to('https://example.com/out')

	assert driver.calls == ['navigate:https://example.com/out', 'go_back']
	assert exc_info.value.long_term_memory is not None
	assert await driver.get_url() == 'https://example.com/'


@pytest.mark.asyncio
async def test_get_state_builds_and_caches_snapshot() -> None:
	context, _ = _context()

	state = await context.get_state()

	assert state.url == 'https://example.com/'
	assert state.title == 'Example'
	assert [tab.page_id for tab in state.tabs] == [0, 1]
	assert state.screenshot == 'base64-screenshot'
	assert (state.pixels_above, state.pixels_below) == (0, 400)
	assert list(state.selector_map) == [0]
	assert context.cached_state is state
	assert await context.get_selector_map() is state.selector_map
	assert (await context.get_dom_element_by_index(0)).tag_name == 'a'


@pytest.mark.asyncio
async def test_get_state_skips_screenshot_when_disabled() -> None:
	context, _ = _context(take_screenshots=False)
	state = await context.get_state()
	assert state.screenshot is None


@pytest.mark.asyncio
async def test_get_dom_element_by_index_raises_for_unknown_index() -> None:
	context, _ = _context()
	await context.get_state()

	with pytest.raises(ElementNotFoundError, match='Element with index 5 does not exist'):
		await context.get_dom_element_by_index(5)


@pytest.mark.asyncio
async def test_selector_map_is_empty_before_first_observation() -> None:
	context, _ = _context()
	assert await context.get_selector_map() == {}


@pytest.mark.asyncio
async def test_switch_to_tab_accepts_negative_ids() -> None:
	context, driver = _context()

	await context.switch_to_tab(-1)

	assert driver.calls == ['switch_tab:1']
	assert driver.active == 1


@pytest.mark.asyncio
async def test_switch_to_tab_rejects_unknown_tab() -> None:
	context, _ = _context()
	with pytest.raises(BrowserError, match='No tab found'):
		await context.switch_to_tab(4)


@pytest.mark.asyncio
async def test_switch_to_tab_blocks_disallowed_tab() -> None:
	context, driver = _context(allowed_domains=['docs.example.com'])
	driver.tabs[1] = driver.tabs[1].model_copy(update={'url': 'https://evil.test/'})

	with pytest.raises(NavigationBlockedError):
		await context.switch_to_tab(1)


@pytest.mark.asyncio
async def test_driver_failures_are_normalised_to_browser_error() -> None:
	context, driver = _context()
	driver.page_source_error = RuntimeError('session crashed')

	with pytest.raises(BrowserError, match='get_page_html failed: session crashed'):
		await context.get_page_html()
