"""Unit tests for AgentHistoryList persistence and query helpers."""

import json
from pathlib import Path

import pytest

from browser_pilot.agent.views import ActionResult, AgentHistory, AgentHistoryList, AgentOutput
from browser_pilot.browser.views import BrowserStateHistory, TabInfo
from browser_pilot.controller.service import Controller
from browser_pilot.dom.history_tree_processor.service import HistoryTreeProcessor
from browser_pilot.dom.views import DOMElementNode

OUTPUT_MODEL = AgentOutput.type_with_custom_actions(Controller().registry.create_action_model())


def _decision(*actions: dict) -> AgentOutput:
	return OUTPUT_MODEL.model_validate(
		{
			'current_state': {
				'page_summary': 'Search page',
				'evaluation_previous_goal': 'Success - page loaded',
				'memory': 'Step 1 of 3',
				'next_goal': 'Search for shoes',
			},
			'action': list(actions),
		}
	)


def _interacted_element() -> object:
	root = DOMElementNode(tag_name='body', xpath='html/body', is_visible=True)
	field = DOMElementNode(
		tag_name='input', xpath='html/body/input', attributes={'name': 'q'}, is_visible=True, highlight_index=3
	)
	root.append_child(field)
	return HistoryTreeProcessor.convert_dom_element_to_history_element(field)


def _entry(model_output: AgentOutput | None, *results: ActionResult, url: str = 'https://shop.example') -> AgentHistory:
	interacted = [_interacted_element(), None] if model_output else []
	return AgentHistory(
		model_output=model_output,
		result=list(results),
		state=BrowserStateHistory(
			url=url,
			title='Shop',
			tabs=[TabInfo(page_id=0, url=url, title='Shop')],
			interacted_element=interacted,
			screenshot='iVBORw0KGgo=' if model_output else None,
		),
	)


def _histories() -> dict[str, AgentHistoryList]:
	first = _entry(
		_decision({'input_text': {'index': 3, 'text': 'shoes'}}, {'send_keys': {'keys': 'Enter'}}),
		ActionResult(extracted_content='typed', include_in_memory=True),
		ActionResult(extracted_content='sent Enter'),
	)
	failed = _entry(None, ActionResult(error='Could not parse response', include_in_memory=True))
	done = _entry(
		_decision({'done': {'text': 'Found 3 pairs'}}),
		ActionResult(is_done=True, extracted_content='Found 3 pairs', include_in_memory=True),
		url='https://shop.example/results',
	)
	return {
		'empty': AgentHistoryList(),
		'single': AgentHistoryList(history=[first]),
		'many': AgentHistoryList(history=[first, failed, done]),
		'null_output_only': AgentHistoryList(history=[failed]),
	}


@pytest.mark.parametrize('name', ['empty', 'single', 'many', 'null_output_only'])
def test_save_then_load_returns_an_equal_history(tmp_path: Path, name: str) -> None:
	history = _histories()[name]
	path = tmp_path / 'nested' / 'history.json'

	history.save_to_file(path)
	loaded = AgentHistoryList.load_from_file(path, OUTPUT_MODEL)

	assert loaded == history


def test_saved_document_uses_the_documented_keys(tmp_path: Path) -> None:
	path = tmp_path / 'history.json'
	_histories()['many'].save_to_file(path)

	data = json.loads(path.read_text(encoding='utf-8'))

	assert data['version'] == 1
	first = data['history'][0]
	assert set(first) == {'modelOutput', 'result', 'state'}
	assert set(first['modelOutput']) == {'current_state', 'action'}
	assert first['modelOutput']['action'][0] == {'input_text': {'index': 3, 'text': 'shoes'}}
	assert first['state']['interactedElement'][0]['entire_parent_branch_path'] == ['input']
	assert first['state']['interactedElement'][1] is None
	assert data['history'][1]['modelOutput'] is None
	assert data['history'][1]['result'] == [{'is_done': False, 'error': 'Could not parse response', 'include_in_memory': True}]


def test_load_accepts_snake_case_keys() -> None:
	data = _histories()['single'].model_dump()
	entry = data['history'][0]
	entry['model_output'] = entry.pop('modelOutput')
	entry['state']['interacted_element'] = entry['state'].pop('interactedElement')

	loaded = AgentHistoryList.load_from_dict(data, OUTPUT_MODEL)

	assert loaded == _histories()['single']


def test_load_accepts_documents_without_a_version() -> None:
	data = _histories()['single'].model_dump()
	del data['version']
	assert len(AgentHistoryList.load_from_dict(data, OUTPUT_MODEL).history) == 1


@pytest.mark.parametrize('version', [2, '1', None])
def test_load_rejects_unknown_versions(version: object) -> None:
	with pytest.raises(ValueError, match='Unsupported history format version'):
		AgentHistoryList.load_from_dict({'version': version, 'history': []}, OUTPUT_MODEL)


def test_query_helpers() -> None:
	history = _histories()['many']

	assert history.is_done() is True
	assert history.final_result() == 'Found 3 pairs'
	assert history.errors() == [None, 'Could not parse response', None]
	assert history.has_errors() is True
	assert history.urls() == ['https://shop.example', 'https://shop.example', 'https://shop.example/results']
	assert history.action_names() == ['input_text', 'send_keys', 'done']
	assert history.extracted_content() == ['typed', 'sent Enter', 'Found 3 pairs']
	assert history.last_action() == {'done': {'text': 'Found 3 pairs'}}
	assert [t.next_goal for t in history.model_thoughts()] == ['Search for shoes', 'Search for shoes']

	actions = history.model_actions()
	assert actions[0]['interacted_element'].highlight_index == 3
	assert actions[1]['interacted_element'] is None
	assert history.model_actions_filtered(include=['done']) == [
		{'done': {'text': 'Found 3 pairs'}, 'interacted_element': actions[2]['interacted_element']}
	]


def test_empty_history_queries() -> None:
	history = AgentHistoryList()
	assert history.is_done() is False
	assert history.final_result() is None
	assert history.last_action() is None
	assert history.has_errors() is False
