"""Selenium backend for BrowserContext.

WebDriver is synchronous, so each call is pushed to a worker thread and bounded by
``DriverConfig.command_timeout``. A single lock serialises calls on one session.
"""

import asyncio
import importlib
from collections.abc import Callable
from typing import Any, Literal, TypeVar

import anyio
from pydantic import BaseModel, ConfigDict, Field, validate_call

from browser_pilot.config import CONFIG

T = TypeVar('T')

BrowserName = Literal['chrome', 'firefox', 'edge', 'safari']

# (webdriver factory, package holding Options/Service)
_LAUNCHERS: dict[str, tuple[str, str]] = {
	'chrome': ('Chrome', 'selenium.webdriver.chrome'),
	'firefox': ('Firefox', 'selenium.webdriver.firefox'),
	'edge': ('Edge', 'selenium.webdriver.edge'),
	'safari': ('Safari', 'selenium.webdriver.safari'),
}

_LOCATOR_STRATEGIES = {'css': 'CSS_SELECTOR', 'xpath': 'XPATH'}

# selenium Keys attribute -> names the model may use for it
_KEY_NAMES: dict[str, tuple[str, ...]] = {
	'BACKSPACE': ('backspace',),
	'TAB': ('tab',),
	'ENTER': ('enter',),
	'RETURN': ('return',),
	'ESCAPE': ('esc', 'escape'),
	'SPACE': ('space',),
	'PAGE_UP': ('pageup',),
	'PAGE_DOWN': ('pagedown',),
	'END': ('end',),
	'HOME': ('home',),
	'ARROW_LEFT': ('left', 'arrowleft'),
	'ARROW_UP': ('up', 'arrowup'),
	'ARROW_RIGHT': ('right', 'arrowright'),
	'ARROW_DOWN': ('down', 'arrowdown'),
	'DELETE': ('delete',),
	'COMMAND': ('cmd', 'command'),
	'META': ('meta',),
	'CONTROL': ('ctrl', 'control'),
	'ALT': ('alt',),
	'SHIFT': ('shift',),
}
_KEY_ALIASES = {alias: attr for attr, aliases in _KEY_NAMES.items() for alias in aliases}

KeyChord = tuple[tuple[str, ...], str]


def parse_key_sequence(keys: str) -> list[KeyChord]:
	"""Split ``'Control+a Delete'`` into chords of (held modifiers, pressed key)."""
	chords: list[KeyChord] = []
	for token in keys.split():
		parts = [part for part in token.split('+') if part]
		if len(parts) > 1:
			chords.append((tuple(parts[:-1]), parts[-1]))
		else:
			chords.append(((), token))
	return chords


def to_selenium_key(name: str) -> str:
	"""Map a key name to the selenium Keys value; single characters and unknown names pass through."""
	from selenium.webdriver.common.keys import Keys

	name = name.strip()
	if len(name) <= 1:
		return name
	attr = _KEY_ALIASES.get(name.lower())
	return getattr(Keys, attr) if attr else name


class DriverConfig(BaseModel):
	"""How to launch the WebDriver session."""

	model_config = ConfigDict(extra='forbid')

	browser: BrowserName = 'chrome'
	executable_path: str | None = None
	headless: bool = Field(default_factory=lambda: CONFIG.IN_DOCKER)
	window_width: int = Field(default=1280, gt=0)
	window_height: int = Field(default=1100, gt=0)
	extra_args: list[str] = Field(default_factory=list)
	command_timeout: float = Field(default=45.0, gt=0)
	page_load_timeout: float = Field(default=60.0, gt=0)
	script_timeout: float = Field(default=30.0, gt=0)


class DriverTabInfo(BaseModel):
	model_config = ConfigDict(extra='forbid')

	index: int
	handle: str
	url: str
	title: str


class DriverNotStartedError(RuntimeError):
	"""The session was used before start() or after close()."""


class SeleniumDriver:
	"""Async facade over one Selenium WebDriver session."""

	def __init__(self, config: DriverConfig | None = None):
		self.config = config or DriverConfig()
		self._driver: Any | None = None
		self._lock = asyncio.Lock()

	@property
	def is_started(self) -> bool:
		return self._driver is not None

	def _session(self) -> Any:
		if self._driver is None:
			raise DriverNotStartedError('WebDriver session is not running, await start() first')
		return self._driver

	async def _run_sync(self, operation: Callable[[], T], timeout: float | None = None) -> T:
		return await asyncio.wait_for(asyncio.to_thread(operation), timeout=timeout or self.config.command_timeout)

	async def _call(self, operation: Callable[[Any], T], timeout: float | None = None) -> T:
		async with self._lock:
			session = self._session()
			return await self._run_sync(lambda: operation(session), timeout=timeout)

	def _locator_strategy(self, by: str) -> str:
		from selenium.webdriver.common.by import By

		if by not in _LOCATOR_STRATEGIES:
			raise ValueError(f'Unsupported locator type: {by}')
		return getattr(By, _LOCATOR_STRATEGIES[by])

	def _find(self, session: Any, selector: str, by: str) -> Any:
		return session.find_element(self._locator_strategy(by), selector)

	@staticmethod
	def _active_tab(session: Any) -> DriverTabInfo:
		handle = session.current_window_handle
		return DriverTabInfo(
			index=session.window_handles.index(handle), handle=handle, title=session.title, url=session.current_url
		)

	@staticmethod
	def _check_tab_index(index: int, handles: list[str]) -> None:
		if not 0 <= index < len(handles):
			raise IndexError(f'Tab index {index} out of range: 0..{len(handles) - 1}')

	def _browser_arguments(self) -> list[str]:
		cfg = self.config
		args: list[str] = []
		if cfg.browser in ('chrome', 'edge'):
			if cfg.headless:
				args.append('--headless=new')
			args.append(f'--window-size={cfg.window_width},{cfg.window_height}')
			if CONFIG.IN_DOCKER:
				args += ['--no-sandbox', '--disable-dev-shm-usage']
		elif cfg.browser == 'firefox':
			if cfg.headless:
				args.append('-headless')
			args += [f'--width={cfg.window_width}', f'--height={cfg.window_height}']
		return args + cfg.extra_args

	def _launch(self) -> Any:
		from selenium import webdriver
		from selenium.common.exceptions import SessionNotCreatedException

		cfg = self.config
		factory, package = _LAUNCHERS[cfg.browser]
		options = importlib.import_module(f'{package}.options').Options()
		for arg in self._browser_arguments():
			options.add_argument(arg)
		service_cls = importlib.import_module(f'{package}.service').Service
		service = service_cls(executable_path=cfg.executable_path) if cfg.executable_path else service_cls()

		try:
			session = getattr(webdriver, factory)(service=service, options=options)
		except SessionNotCreatedException as exc:
			if cfg.browser == 'safari' and 'Allow remote automation' in str(exc):
				raise RuntimeError('Safari refuses automation: enable "Allow Remote Automation" in the Develop menu') from exc
			raise RuntimeError(f'Could not create a {cfg.browser} WebDriver session: {exc}') from exc

		session.set_page_load_timeout(cfg.page_load_timeout)
		session.set_script_timeout(cfg.script_timeout)
		if cfg.browser == 'safari':
			# safaridriver ignores window-size arguments
			session.set_window_size(cfg.window_width, cfg.window_height)
		return session

	@validate_call
	async def start(self) -> None:
		"""Launch the configured browser; a second call is a no-op."""
		async with self._lock:
			if self._driver is None:
				self._driver = await self._run_sync(self._launch)

	@validate_call
	async def close(self) -> None:
		async with self._lock:
			session, self._driver = self._driver, None
		if session is not None:
			await self._run_sync(session.quit)

	async def __aenter__(self) -> 'SeleniumDriver':
		await self.start()
		return self

	async def __aexit__(self, exc_type, exc, tb) -> None:
		await self.close()

	async def is_alive(self) -> bool:
		if self._driver is None:
			return False
		try:
			await self._call(lambda s: s.title)
		except Exception:
			return False
		return True

	@validate_call
	async def navigate(self, url: str) -> str:
		"""Load ``url`` in the current tab and return where the browser ended up."""

		def _load(session: Any) -> str:
			session.get(url)
			return session.current_url

		return await self._call(_load, timeout=self.config.page_load_timeout)

	async def screenshot(self) -> str:
		return await self._call(lambda s: s.get_screenshot_as_base64())

	@validate_call
	async def execute_js(self, expression: str, *args: Any) -> Any:
		return await self._call(lambda s: s.execute_script(expression, *args), timeout=self.config.script_timeout)

	@validate_call
	async def click_selector(self, selector: str, by: str = 'css') -> None:
		"""Native click on the located element; a JavaScript click when something overlays it."""

		def _click(session: Any) -> None:
			from selenium.common.exceptions import WebDriverException

			element = self._find(session, selector, by)
			try:
				session.execute_script("arguments[0].scrollIntoView({block: 'center', inline: 'nearest'});", element)
				element.click()
			except WebDriverException:
				session.execute_script('arguments[0].click();', element)

		await self._call(_click)

	@validate_call
	async def type_into(self, selector: str, text: str, clear: bool = True, by: str = 'css') -> None:
		def _type(session: Any) -> None:
			element = self._find(session, selector, by)
			if clear:
				element.clear()
			element.send_keys(text)

		await self._call(_type)

	@validate_call
	async def send_keys(self, keys: str) -> None:
		"""Press a key sequence on the focused element, e.g. ``Control+a Delete``."""
		chords = parse_key_sequence(keys)

		def _press(session: Any) -> None:
			from selenium.webdriver import ActionChains

			chain = ActionChains(session)
			for modifiers, key in chords:
				held = [to_selenium_key(m) for m in modifiers]
				for modifier in held:
					chain.key_down(modifier)
				chain.send_keys(to_selenium_key(key))
				for modifier in reversed(held):
					chain.key_up(modifier)
			chain.perform()

		await self._call(_press)

	@validate_call
	async def scroll(self, direction: str, pixels: int | None = None) -> None:
		"""Scroll by ``pixels``, or by one viewport height when no amount is given."""
		sign = {'down': 1, 'up': -1}.get(direction.lower())
		if sign is None:
			raise ValueError(f'Unsupported scroll direction: {direction}')
		if pixels is None:
			await self.execute_js('window.scrollBy(0, arguments[0] * window.innerHeight);', sign)
		else:
			await self.execute_js('window.scrollBy(0, arguments[0]);', sign * abs(pixels))

	async def go_back(self) -> None:
		await self._call(lambda s: s.back())

	async def get_url(self) -> str:
		return await self._call(lambda s: s.current_url)

	async def get_title(self) -> str:
		return await self._call(lambda s: s.title)

	async def get_page_source(self) -> str:
		return await self._call(lambda s: s.page_source)

	async def list_tabs(self) -> list[DriverTabInfo]:
		"""Visit every window handle to read its url and title, then return to the active one."""

		def _collect(session: Any) -> list[DriverTabInfo]:
			from selenium.common.exceptions import WebDriverException

			active = session.current_window_handle
			tabs: list[DriverTabInfo] = []
			for index, handle in enumerate(session.window_handles):
				session.switch_to.window(handle)
				try:
					url, title = session.current_url, session.title
				except WebDriverException:
					url, title = 'about:blank', ''
				tabs.append(DriverTabInfo(index=index, handle=handle, url=url, title=title))
			session.switch_to.window(active)
			return tabs

		return await self._call(_collect)

	@validate_call
	async def switch_tab(self, index: int) -> DriverTabInfo:
		def _switch(session: Any) -> DriverTabInfo:
			handles = session.window_handles
			self._check_tab_index(index, handles)
			session.switch_to.window(handles[index])
			return self._active_tab(session)

		return await self._call(_switch)

	@validate_call
	async def new_tab(self, url: str = 'about:blank') -> DriverTabInfo:
		def _open(session: Any) -> DriverTabInfo:
			session.switch_to.new_window('tab')
			session.get(url)
			return self._active_tab(session)

		return await self._call(_open, timeout=self.config.page_load_timeout)

	@validate_call
	async def close_tab(self, index: int | None = None) -> DriverTabInfo | None:
		"""Close the tab at ``index`` (default: the active one) and focus the last remaining tab."""

		def _close(session: Any) -> DriverTabInfo | None:
			handles = session.window_handles
			if not handles:
				return None
			if index is not None:
				self._check_tab_index(index, handles)
				session.switch_to.window(handles[index])
			session.close()

			remaining = session.window_handles
			if not remaining:
				return None
			session.switch_to.window(remaining[-1])
			return self._active_tab(session)

		return await self._call(_close)

	@validate_call
	async def wait_for_ready_state(self, timeout_seconds: float = 15.0) -> str:
		"""Poll ``document.readyState``; returns the last value seen when the timeout expires."""
		state = 'loading'
		with anyio.move_on_after(timeout_seconds):
			while state != 'complete':
				state = str(await self.execute_js('return document.readyState;'))
				if state != 'complete':
					await anyio.sleep(0.1)
		return state
