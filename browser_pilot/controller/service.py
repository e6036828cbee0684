import asyncio
import json
import logging
from collections.abc import Callable
from functools import partial
from typing import Any

import markdownify

from browser_pilot.agent.views import ActionResult
from browser_pilot.browser.context import BrowserContext
from browser_pilot.controller.registry.service import Registry
from browser_pilot.controller.registry.views import ActionModel
from browser_pilot.controller.views import (
	ClickElementAction,
	CloseTabAction,
	DoneAction,
	ExtractContentAction,
	GetDropdownOptionsAction,
	GoToUrlAction,
	InputTextAction,
	NoParamsAction,
	OpenTabAction,
	ScrollAction,
	ScrollToTextAction,
	SearchGoogleAction,
	SelectDropdownOptionAction,
	SendKeysAction,
	SwitchTabAction,
)
from browser_pilot.dom.history_tree_processor.service import HistoryTreeProcessor
from browser_pilot.dom.views import SelectorMap
from browser_pilot.exceptions import NavigationBlockedError
from browser_pilot.llm.base import BaseChatModel
from browser_pilot.llm.messages import UserMessage
from browser_pilot.telemetry.service import TelemetrySink
from browser_pilot.utils import time_execution_async

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = (
	'Your task is to extract the content of the page. You will be given a page and a goal and you should '
	'extract all relevant information around this goal from the page. If the goal is vague, summarize the page. '
	'Respond in json format. Extraction goal: {goal}, Page: {page}'
)


def _fingerprints(selector_map: SelectorMap) -> set:
	return {HistoryTreeProcessor.hash_dom_element(element) for element in selector_map.values()}


class Controller:
	def __init__(self, exclude_actions: list[str] | None = None, telemetry: TelemetrySink | None = None):
		self.registry = Registry(exclude_actions, telemetry=telemetry)
		self._register_default_actions()

	def _register_default_actions(self) -> None:
		"""Register all default browser actions"""

		@self.registry.action('Complete task', param_model=DoneAction)
		async def done(params: DoneAction):
			return ActionResult(is_done=True, extracted_content=params.text, include_in_memory=True)

		# Basic Navigation Actions
		@self.registry.action(
			'Search the query in Google in the current tab, the query should be a search query like humans search in Google, concrete and not vague or super long. More the single most important items. ',
			param_model=SearchGoogleAction,
		)
		async def search_google(params: SearchGoogleAction, browser: BrowserContext):
			await browser.navigate_to(f'https://www.google.com/search?q={params.query}&udm=14')
			msg = f'🔍  Searched for "{params.query}" in Google'
			logger.info(msg)
			return ActionResult(extracted_content=msg, include_in_memory=True)

		@self.registry.action('Navigate to URL in the current tab', param_model=GoToUrlAction)
		async def go_to_url(params: GoToUrlAction, browser: BrowserContext):
			await browser.navigate_to(params.url)
			msg = f'🔗  Navigated to {params.url}'
			logger.info(msg)
			return ActionResult(extracted_content=msg, include_in_memory=True)

		@self.registry.action('Go back', param_model=NoParamsAction)
		async def go_back(_: NoParamsAction, browser: BrowserContext):
			await browser.go_back()
			msg = '🔙  Navigated back'
			logger.info(msg)
			return ActionResult(extracted_content=msg, include_in_memory=True)

		@self.registry.action('Wait for x seconds default 3')
		async def wait(seconds: int = 3):
			msg = f'🕒  Waiting for {seconds} seconds'
			logger.info(msg)
			await asyncio.sleep(seconds)
			return ActionResult(extracted_content=msg, include_in_memory=True)

		# Element Interaction Actions
		@self.registry.action('Click element', param_model=ClickElementAction)
		async def click_element(params: ClickElementAction, browser: BrowserContext):
			initial_tabs = len(await browser.get_tabs_info())
			element_node = await browser.get_dom_element_by_index(params.index)

			if element_node.get_file_upload_element() is not None:
				msg = f'Index {params.index} - has an element which opens file upload dialog. To upload files please use a specific function to upload files '
				logger.info(msg)
				return ActionResult(extracted_content=msg, include_in_memory=True)

			await browser.click_element_node(element_node)
			msg = f'🖱️  Clicked button with index {params.index}: {element_node.get_all_text_till_next_clickable_element(max_depth=2)}'
			logger.info(msg)
			logger.debug(f'Element xpath: {element_node.xpath}')

			if len(await browser.get_tabs_info()) > initial_tabs:
				msg += ' - New tab opened - switching to it'
				logger.info(' - New tab opened - switching to it')
				await browser.switch_to_tab(-1)
			return ActionResult(extracted_content=msg, include_in_memory=True)

		@self.registry.action('Input text into a input interactive element', param_model=InputTextAction)
		async def input_text(params: InputTextAction, browser: BrowserContext, has_sensitive_data: bool = False):
			element_node = await browser.get_dom_element_by_index(params.index)
			await browser.input_text_element_node(element_node, params.text)
			if has_sensitive_data:
				msg = f'⌨️  Input sensitive data into index {params.index}'
			else:
				msg = f'⌨️  Input {params.text} into index {params.index}'
			logger.info(msg)
			logger.debug(f'Element xpath: {element_node.xpath}')
			return ActionResult(extracted_content=msg, include_in_memory=True)

		# Tab Management Actions
		@self.registry.action('Switch tab', param_model=SwitchTabAction)
		async def switch_tab(params: SwitchTabAction, browser: BrowserContext):
			await browser.switch_to_tab(params.page_id)
			msg = f'🔄  Switched to tab {params.page_id}'
			logger.info(msg)
			return ActionResult(extracted_content=msg, include_in_memory=True)

		@self.registry.action('Open url in new tab', param_model=OpenTabAction)
		async def open_tab(params: OpenTabAction, browser: BrowserContext):
			await browser.create_new_tab(params.url)
			msg = f'🔗  Opened new tab with {params.url}'
			logger.info(msg)
			return ActionResult(extracted_content=msg, include_in_memory=True)

		@self.registry.action('Close an existing tab', param_model=CloseTabAction)
		async def close_tab(params: CloseTabAction, browser: BrowserContext):
			tabs = await browser.get_tabs_info()
			url = next((tab.url for tab in tabs if tab.page_id == params.page_id), 'unknown')
			await browser.close_tab(params.page_id)
			msg = f'❌  Closed tab #{params.page_id} with url {url}'
			logger.info(msg)
			return ActionResult(extracted_content=msg, include_in_memory=True)

		# Content Actions
		@self.registry.action(
			'Extract page content to retrieve specific information from the page, e.g. all company names, a specifc description, all information about, links with companies in structured format or simply links',
			param_model=ExtractContentAction,
		)
		async def extract_content(
			params: ExtractContentAction, browser: BrowserContext, page_extraction_llm: BaseChatModel | None = None
		):
			page_html = await browser.get_page_html()
			loop = asyncio.get_running_loop()
			content = await loop.run_in_executor(None, partial(markdownify.markdownify, strip=['a', 'img']), page_html)

			if page_extraction_llm is None:
				msg = f'📄  Extracted from page\n: {content}\n'
				logger.info(msg)
				return ActionResult(extracted_content=msg, include_in_memory=True)

			prompt = EXTRACTION_PROMPT.format(goal=params.goal, page=content)
			try:
				output = await page_extraction_llm.ainvoke([UserMessage(content=prompt)])
				msg = f'📄  Extracted from page\n: {output.completion}\n'
			except Exception as e:
				logger.debug(f'Error extracting content with the page extraction model: {e}')
				msg = f'📄  Extracted from page\n: {content}\n'
			logger.info(msg)
			return ActionResult(extracted_content=msg, include_in_memory=True)

		@self.registry.action(
			'Scroll down the page by pixel amount - if no amount is specified, scroll down one page', param_model=ScrollAction
		)
		async def scroll_down(params: ScrollAction, browser: BrowserContext):
			await browser.scroll('down', params.amount)
			amount = f'{params.amount} pixels' if params.amount is not None else 'one page'
			msg = f'🔍  Scrolled down the page by {amount}'
			logger.info(msg)
			return ActionResult(extracted_content=msg, include_in_memory=True)

		@self.registry.action(
			'Scroll up the page by pixel amount - if no amount is specified, scroll up one page', param_model=ScrollAction
		)
		async def scroll_up(params: ScrollAction, browser: BrowserContext):
			await browser.scroll('up', params.amount)
			amount = f'{params.amount} pixels' if params.amount is not None else 'one page'
			msg = f'🔍  Scrolled up the page by {amount}'
			logger.info(msg)
			return ActionResult(extracted_content=msg, include_in_memory=True)

		@self.registry.action(
			'Send strings of special keys like Escape, Backspace, Insert, PageDown, Delete, Enter, Shortcuts such as `Control+o`, `Control+Shift+T` are supported as well.',
			param_model=SendKeysAction,
		)
		async def send_keys(params: SendKeysAction, browser: BrowserContext):
			await browser.send_keys(params.keys)
			msg = f'⌨️  Sent keys: {params.keys}'
			logger.info(msg)
			return ActionResult(extracted_content=msg, include_in_memory=True)

		@self.registry.action(
			'If you dont find something which you want to interact with, scroll to it', param_model=ScrollToTextAction
		)
		async def scroll_to_text(params: ScrollToTextAction, browser: BrowserContext):
			if await browser.scroll_to_text(params.text):
				msg = f'🔍  Scrolled to text: {params.text}'
			else:
				msg = f"Text '{params.text}' not found or not visible on page"
			logger.info(msg)
			return ActionResult(extracted_content=msg, include_in_memory=True)

		@self.registry.action('Get all options from a native dropdown', param_model=GetDropdownOptionsAction)
		async def get_dropdown_options(params: GetDropdownOptionsAction, browser: BrowserContext):
			element_node = await browser.get_dom_element_by_index(params.index)
			dropdown = await browser.get_dropdown_options(element_node)
			if 'error' in dropdown:
				return ActionResult(error=f'Cannot get dropdown options for index {params.index}: {dropdown["error"]}', include_in_memory=True)

			options = [f'{option["index"]}: text={json.dumps(option["text"])}' for option in dropdown.get('options', [])]
			if not options:
				msg = f'No options found in dropdown with index {params.index}'
			else:
				msg = '\n'.join(options) + '\nUse the exact text string in select_dropdown_option'
			logger.info(msg)
			return ActionResult(extracted_content=msg, include_in_memory=True)

		@self.registry.action(
			'Select dropdown option for interactive element index by the text of the option you want to select',
			param_model=SelectDropdownOptionAction,
		)
		async def select_dropdown_option(params: SelectDropdownOptionAction, browser: BrowserContext):
			element_node = await browser.get_dom_element_by_index(params.index)
			if element_node.tag_name != 'select':
				msg = f'Cannot select option: Element with index {params.index} is a {element_node.tag_name}, not a select'
				logger.error(msg)
				return ActionResult(extracted_content=msg, include_in_memory=True)

			selection = await browser.select_dropdown_option(element_node, params.text)
			if 'error' in selection:
				return ActionResult(error=f'Could not select option {params.text!r}: {selection["error"]}', include_in_memory=True)

			msg = f'selected option {params.text} with value {selection.get("value")}'
			logger.info(msg)
			return ActionResult(extracted_content=msg, include_in_memory=True)

	# Register ---------------------------------------------------------------

	def action(self, description: str, **kwargs):
		"""Decorator for registering custom actions

		@param description: Describe the LLM what the function does (better description == better function calling)
		"""
		return self.registry.action(description, **kwargs)

	# Act --------------------------------------------------------------------

	@time_execution_async('--act')
	async def act(
		self,
		action: ActionModel,
		browser_context: BrowserContext,
		page_extraction_llm: BaseChatModel | None = None,
		sensitive_data: dict[str, str] | None = None,
		available_file_paths: list[str] | None = None,
	) -> ActionResult:
		"""Execute an action"""
		for action_name, params in action.model_dump(exclude_unset=True).items():
			if params is None:
				continue
			try:
				result = await self.registry.execute_action(
					action_name,
					params,
					browser=browser_context,
					page_extraction_llm=page_extraction_llm,
					sensitive_data=sensitive_data,
					available_file_paths=available_file_paths,
				)
			except NavigationBlockedError as e:
				logger.warning(f'⛔️ {action_name} blocked: {e.message}')
				return ActionResult(error=e.message, include_in_memory=True)

			if isinstance(result, str):
				return ActionResult(extracted_content=result)
			elif isinstance(result, ActionResult):
				return result
			elif result is None:
				return ActionResult()
			else:
				raise TypeError(f'Invalid action result type: {type(result)} of {result}')
		return ActionResult()

	@time_execution_async('--multi_act')
	async def multi_act(
		self,
		actions: list[ActionModel],
		browser_context: BrowserContext,
		check_break_if_paused: Callable[[], Any] | None = None,
		check_for_new_elements: bool = True,
		page_extraction_llm: BaseChatModel | None = None,
		sensitive_data: dict[str, str] | None = None,
		available_file_paths: list[str] | None = None,
	) -> list[ActionResult]:
		"""Execute multiple actions in order, stopping early when the page grows new elements."""
		results: list[ActionResult] = []

		cached_fingerprints = _fingerprints(await browser_context.get_selector_map())
		await browser_context.remove_highlights()

		for i, action in enumerate(actions):
			if check_break_if_paused is not None:
				check_break_if_paused()

			if i > 0 and check_for_new_elements and action.get_index() is not None:
				new_state = await browser_context.get_state()
				if not _fingerprints(new_state.selector_map).issubset(cached_fingerprints):
					msg = f'Something new appeared after action {i} / {len(actions)}'
					logger.info(msg)
					results.append(ActionResult(extracted_content=msg, include_in_memory=True))
					break

			if check_break_if_paused is not None:
				check_break_if_paused()

			result = await self.act(
				action,
				browser_context,
				page_extraction_llm=page_extraction_llm,
				sensitive_data=sensitive_data,
				available_file_paths=available_file_paths,
			)
			results.append(result)

			logger.debug(f'Executed action {i + 1} / {len(actions)}')
			if result.is_done or result.error or i == len(actions) - 1:
				break

			await asyncio.sleep(browser_context.config.wait_between_actions)

		return results
