"""Unit tests for replaying a saved AgentHistoryList against a fresh page."""

from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from browser_pilot.agent.service import Agent
from browser_pilot.agent.views import ActionResult, AgentHistory, AgentHistoryList
from browser_pilot.browser.views import BrowserState, BrowserStateHistory, TabInfo
from browser_pilot.dom.history_tree_processor.service import HistoryTreeProcessor
from browser_pilot.dom.views import DOMElementNode, DOMTextNode


def _page(button_index: int | None, *, button_id: str = 'checkout') -> BrowserState:
	"""A body with a banner link at index 0 and, optionally, the checkout button."""
	root = DOMElementNode(tag_name='body', xpath='html/body', is_visible=True)
	banner = DOMElementNode(tag_name='a', xpath='html/body/a', attributes={'href': '/sale'}, is_visible=True, highlight_index=0)
	banner.append_child(DOMTextNode(text='Sale', is_visible=True))
	root.append_child(banner)
	selector_map = {0: banner}
	if button_index is not None:
		button = DOMElementNode(
			tag_name='button',
			xpath='html/body/div/button',
			attributes={'id': button_id},
			is_visible=True,
			highlight_index=button_index,
		)
		button.append_child(DOMTextNode(text='Checkout', is_visible=True))
		wrapper = DOMElementNode(tag_name='div', xpath='html/body/div', is_visible=True)
		wrapper.append_child(button)
		root.append_child(wrapper)
		selector_map[button_index] = button
	return BrowserState(
		element_tree=root,
		selector_map=selector_map,
		url='https://shop.example/cart',
		title='Cart',
		tabs=[TabInfo(page_id=0, url='https://shop.example/cart', title='Cart')],
	)


class _FakeBrowserContext:
	def __init__(self, page: BrowserState) -> None:
		self.config = SimpleNamespace(wait_between_actions=0)
		self.page = page
		self.state: BrowserState | None = None
		self.calls: list[str] = []

	async def get_state(self) -> BrowserState:
		self.state = self.page
		return self.state

	async def get_selector_map(self) -> dict[int, DOMElementNode]:
		return self.state.selector_map if self.state else {}

	async def remove_highlights(self) -> None:
		return None

	async def get_tabs_info(self) -> list[TabInfo]:
		return list(self.page.tabs)

	async def get_dom_element_by_index(self, index: int) -> DOMElementNode:
		return (await self.get_selector_map())[index]

	async def click_element_node(self, element_node: DOMElementNode) -> None:
		self.calls.append(f'click:{element_node.highlight_index}')

	async def navigate_to(self, url: str) -> None:
		self.calls.append(f'navigate:{url}')


class _UnusedLLM:
	model = 'unused'

	@property
	def provider(self) -> str:
		return 'unused'

	async def ainvoke(self, messages: list[Any], output_format: Any = None) -> Any:
		raise AssertionError('replay must not call the model')


def _agent(page: BrowserState) -> tuple[Agent, _FakeBrowserContext]:
	browser = _FakeBrowserContext(page)
	agent = Agent(task='Check out the cart', llm=_UnusedLLM(), browser_context=browser)  # type: ignore[arg-type]
	return agent, browser


def _recorded_history(agent: Agent) -> AgentHistoryList:
	"""Click the checkout button (recorded at index 1), then finish; a failed step sits in between."""
	recorded_page = _page(button_index=1)
	button = recorded_page.selector_map[1]

	def output(*actions: dict[str, Any]) -> Any:
		return agent.AgentOutput.model_validate(
			{
				'current_state': {'evaluation_previous_goal': 'Unknown', 'memory': '', 'next_goal': 'Check out'},
				'action': list(actions),
			}
		)

	def state(*interacted: Any) -> BrowserStateHistory:
		return BrowserStateHistory(
			url=recorded_page.url, title=recorded_page.title, tabs=recorded_page.tabs, interacted_element=list(interacted)
		)

	return AgentHistoryList(
		history=[
			AgentHistory(
				model_output=output({'click_element': {'index': 1}}),
				result=[ActionResult(extracted_content='clicked', include_in_memory=True)],
				state=state(HistoryTreeProcessor.convert_dom_element_to_history_element(button)),
			),
			AgentHistory(model_output=None, result=[ActionResult(error='Could not parse response')], state=state(None)),
			AgentHistory(
				model_output=output({'done': {'text': 'Checked out'}}),
				result=[ActionResult(is_done=True, extracted_content='Checked out', include_in_memory=True)],
				state=state(None),
			),
		]
	)


@pytest.mark.asyncio
async def test_rerun_retargets_elements_that_moved() -> None:
	agent, browser = _agent(_page(button_index=5))
	history = _recorded_history(agent)

	results = await agent.rerun_history(history, delay_between_actions=0)

	assert browser.calls == ['click:5']
	assert results[1] == ActionResult(error='No action to replay')
	assert results[-1].is_done is True
	assert results[-1].extracted_content == 'Checked out'
	# the recorded history is left untouched
	assert history.history[0].model_output.action[0].get_index() == 1  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_rerun_skips_steps_whose_element_is_gone() -> None:
	agent, browser = _agent(_page(button_index=None))

	results = await agent.rerun_history(_recorded_history(agent), max_retries=2, delay_between_actions=0)

	assert browser.calls == []
	assert results[0].error == 'Step 1 failed after 2 attempts: Could not find matching element 0 in current page'
	assert results[-1].is_done is True


@pytest.mark.asyncio
async def test_rerun_treats_changed_attributes_as_a_different_element() -> None:
	agent, browser = _agent(_page(button_index=1, button_id='checkout-v2'))

	results = await agent.rerun_history(_recorded_history(agent), max_retries=1, delay_between_actions=0)

	assert browser.calls == []
	assert results[0].error is not None


@pytest.mark.asyncio
async def test_rerun_raises_when_failures_are_not_skipped() -> None:
	agent, _ = _agent(_page(button_index=None))

	with pytest.raises(RuntimeError, match='Step 1 failed after 1 attempts'):
		await agent.rerun_history(_recorded_history(agent), max_retries=1, skip_failures=False, delay_between_actions=0)


@pytest.mark.asyncio
async def test_saved_history_can_be_loaded_and_replayed(tmp_path: Path) -> None:
	agent, browser = _agent(_page(button_index=3))
	agent.history = _recorded_history(agent)
	path = tmp_path / 'runs' / 'checkout.json'

	await agent.save_history(str(path))
	results = await agent.load_and_rerun(str(path), delay_between_actions=0)

	assert path.exists()
	assert browser.calls == ['click:3']
	assert results[-1].extracted_content == 'Checked out'
