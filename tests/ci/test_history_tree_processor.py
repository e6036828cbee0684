"""Unit tests for element fingerprints and historical element lookup."""

from __future__ import annotations

from browser_pilot.dom.history_tree_processor.service import HistoryTreeProcessor
from browser_pilot.dom.history_tree_processor.views import DOMHistoryElement, HashedDomElement
from browser_pilot.dom.views import DOMElementNode, DOMTextNode


def _element(tag: str, xpath: str, highlight_index: int | None = None, **attributes: str) -> DOMElementNode:
	return DOMElementNode(
		tag_name=tag,
		xpath=xpath,
		attributes=dict(attributes),
		is_visible=True,
		is_interactive=highlight_index is not None,
		highlight_index=highlight_index,
	)


def _form_page(submit_index: int = 0, wrapper_tag: str = 'form') -> tuple[DOMElementNode, DOMElementNode]:
	"""html > body > <wrapper> > button; returns (root, button)."""
	root = _element('html', '')
	body = _element('body', 'html/body')
	wrapper = _element(wrapper_tag, 'html/body/div')
	button = _element('button', 'html/body/div/button', highlight_index=submit_index, type='submit')
	button.append_child(DOMTextNode(text='Submit', is_visible=True))
	wrapper.append_child(button)
	body.append_child(wrapper)
	root.append_child(body)
	return root, button


def test_fingerprint_is_deterministic() -> None:
	root, button = _form_page()
	first = HistoryTreeProcessor.hash_dom_element(button)
	second = HistoryTreeProcessor.hash_dom_element(button)

	assert first == second
	assert isinstance(first, HashedDomElement)
	# sha256 of 'body/form/button', 'type=submit' and 'html/body/div/button'; stable across processes
	assert first == HashedDomElement(
		branch_path_hash='d9a2efc8ba68d540ad23b078df786bc8e25b8d8b786302a3088caacfc9ec9785',
		attributes_hash='d10c6db27fa2c400cca60662cf3b895ec0c466e0784a4221564f7b3cd77c3ed1',
		xpath_hash='c8927524e594b6778980764ac273df848c77eb5acb3f2f3b278129f700d4d8cd',
	)
	assert root.children  # keeps the tree alive while parents are weak references


def test_fingerprint_ignores_highlight_index() -> None:
	root_a, button_a = _form_page(submit_index=0)
	root_b, button_b = _form_page(submit_index=7)

	assert HistoryTreeProcessor.same_element(
		HistoryTreeProcessor.hash_dom_element(button_a),
		HistoryTreeProcessor.hash_dom_element(button_b),
	)
	assert root_a is not root_b


def test_same_xpath_with_different_ancestor_tags_is_a_different_element() -> None:
	root_a, button_a = _form_page(wrapper_tag='form')
	root_b, button_b = _form_page(wrapper_tag='section')

	assert button_a.xpath == button_b.xpath
	assert not HistoryTreeProcessor.same_element(
		HistoryTreeProcessor.hash_dom_element(button_a),
		HistoryTreeProcessor.hash_dom_element(button_b),
	)
	assert root_a is not root_b


def test_attribute_order_does_not_change_the_fingerprint() -> None:
	a = _element('input', 'html/body/input', highlight_index=1)
	a.attributes = {'name': 'q', 'type': 'text'}
	b = _element('input', 'html/body/input', highlight_index=1)
	b.attributes = {'type': 'text', 'name': 'q'}

	assert HistoryTreeProcessor.hash_dom_element(a) == HistoryTreeProcessor.hash_dom_element(b)


def test_attribute_value_change_breaks_the_match() -> None:
	a = _element('input', 'html/body/input', highlight_index=1, name='q')
	b = _element('input', 'html/body/input', highlight_index=1, name='query')

	assert HistoryTreeProcessor.hash_dom_element(a) != HistoryTreeProcessor.hash_dom_element(b)


def test_parent_branch_path_runs_from_below_root_to_element() -> None:
	root, button = _form_page()
	assert HistoryTreeProcessor._get_parent_branch_path(button) == ['body', 'form', 'button']
	assert root.parent is None


def test_history_element_is_detached_and_round_trips_through_json() -> None:
	root, button = _form_page(submit_index=3)
	history_element = HistoryTreeProcessor.convert_dom_element_to_history_element(button)

	assert history_element.highlight_index == 3
	assert history_element.entire_parent_branch_path == ['body', 'form', 'button']
	assert history_element.attributes == {'type': 'submit'}
	assert history_element.css_selector

	restored = DOMHistoryElement.model_validate_json(history_element.model_dump_json())
	assert restored == history_element
	assert HistoryTreeProcessor.compare_history_element_and_dom_element(restored, button)
	assert root.children


def test_find_history_element_in_tree_follows_index_changes() -> None:
	old_root, old_button = _form_page(submit_index=0)
	history_element = HistoryTreeProcessor.convert_dom_element_to_history_element(old_button)

	new_root, new_button = _form_page(submit_index=4)
	found = HistoryTreeProcessor.find_history_element_in_tree(history_element, new_root)

	assert found is new_button
	assert found.highlight_index == 4
	assert old_root is not new_root


def test_find_history_element_in_tree_returns_none_when_page_changed() -> None:
	_, old_button = _form_page()
	history_element = HistoryTreeProcessor.convert_dom_element_to_history_element(old_button)

	new_root, _ = _form_page(wrapper_tag='section')
	assert HistoryTreeProcessor.find_history_element_in_tree(history_element, new_root) is None


def test_find_history_element_in_tree_skips_non_interactive_matches() -> None:
	_, old_button = _form_page()
	history_element = HistoryTreeProcessor.convert_dom_element_to_history_element(old_button)

	new_root, new_button = _form_page()
	new_button.highlight_index = None
	assert HistoryTreeProcessor.find_history_element_in_tree(history_element, new_root) is None
