"""Snapshot construction from the in-page DOM walker."""

import logging
import re
from typing import Any, Protocol, cast

from browser_pilot.dom.views import (
	DOMBaseNode,
	DOMElementNode,
	DOMState,
	DOMTextNode,
	RawDOMElementNode,
	RawDOMTextNode,
	RawDOMTree,
	SelectorMap,
)
from browser_pilot.utils import time_execution_async

logger = logging.getLogger(__name__)

HIGHLIGHT_CONTAINER_ID = 'browser-pilot-highlight-container'

DOM_WALKER_SCRIPT = r"""
return (() => {
	const args = arguments[0] || {};
	const doHighlightElements = args.doHighlightElements !== false;
	const focusHighlightIndex = Number(args.focusHighlightIndex ?? -1);
	const viewportExpansion = Number(args.viewportExpansion ?? 0);
	const containerId = args.containerId || 'browser-pilot-highlight-container';

	const map = {};
	let idCounter = 0;
	let highlightIndex = 0;

	const skippedTags = new Set(['script', 'style', 'noscript', 'meta', 'link', 'head', 'template']);
	const interactiveTags = new Set([
		'a', 'button', 'input', 'select', 'textarea', 'details', 'summary', 'option', 'label'
	]);
	const interactiveRoles = new Set([
		'button', 'link', 'checkbox', 'radio', 'tab', 'menuitem', 'menuitemcheckbox', 'menuitemradio',
		'option', 'switch', 'combobox', 'textbox', 'searchbox', 'slider', 'spinbutton', 'treeitem'
	]);

	const isVisible = (el) => {
		if (!el || el.nodeType !== Node.ELEMENT_NODE) return false;
		const rect = el.getBoundingClientRect();
		if (rect.width <= 0 || rect.height <= 0) return false;
		const style = window.getComputedStyle(el);
		if (!style) return true;
		return style.display !== 'none' && style.visibility !== 'hidden' && style.opacity !== '0';
	};

	const isInteractive = (el) => {
		const tag = el.tagName.toLowerCase();
		if (el.hasAttribute('disabled') || el.getAttribute('aria-disabled') === 'true') return false;
		if (interactiveTags.has(tag)) {
			if (tag === 'a') return el.hasAttribute('href') || el.hasAttribute('onclick');
			if (tag === 'input') return (el.getAttribute('type') || '').toLowerCase() !== 'hidden';
			return true;
		}
		const role = el.getAttribute('role');
		if (role && interactiveRoles.has(role)) return true;
		if (el.hasAttribute('onclick')) return true;
		if (el.isContentEditable && el.getAttribute('contenteditable') !== 'false') return true;
		const tabindex = el.getAttribute('tabindex');
		return tabindex !== null && tabindex !== '-1';
	};

	const isTopElement = (el) => {
		const rect = el.getBoundingClientRect();
		const inExpandedViewport = (
			rect.bottom >= -viewportExpansion &&
			rect.top <= window.innerHeight + viewportExpansion &&
			rect.right >= -viewportExpansion &&
			rect.left <= window.innerWidth + viewportExpansion
		);
		if (!inExpandedViewport) return false;
		const cx = rect.left + rect.width / 2;
		const cy = rect.top + rect.height / 2;
		if (cx < 0 || cy < 0 || cx > window.innerWidth || cy > window.innerHeight) return true;
		const root = el.getRootNode();
		let hit = (root && root.elementFromPoint) ? root.elementFromPoint(cx, cy) : document.elementFromPoint(cx, cy);
		while (hit) {
			if (hit === el) return true;
			hit = hit.parentElement;
		}
		return false;
	};

	const getXPath = (el) => {
		const segments = [];
		let current = el;
		while (current && current.nodeType === Node.ELEMENT_NODE) {
			let index = 0;
			let sibling = current.previousSibling;
			while (sibling) {
				if (sibling.nodeType === Node.ELEMENT_NODE && sibling.nodeName === current.nodeName) index += 1;
				sibling = sibling.previousSibling;
			}
			const tagName = current.nodeName.toLowerCase();
			segments.unshift(index > 0 ? `${tagName}[${index + 1}]` : tagName);
			current = current.parentNode;
		}
		return segments.join('/');
	};

	const highlight = (el, index) => {
		let container = document.getElementById(containerId);
		if (!container) {
			container = document.createElement('div');
			container.id = containerId;
			container.style.position = 'fixed';
			container.style.pointerEvents = 'none';
			container.style.top = '0';
			container.style.left = '0';
			container.style.width = '100%';
			container.style.height = '100%';
			container.style.zIndex = '2147483647';
			document.body.appendChild(container);
		}
		const colors = ['#FF0000', '#00AA00', '#0000FF', '#FFA500', '#800080', '#008080', '#FF69B4', '#4B0082'];
		const color = colors[index % colors.length];
		const rect = el.getBoundingClientRect();
		const overlay = document.createElement('div');
		overlay.style.position = 'fixed';
		overlay.style.border = `2px solid ${color}`;
		overlay.style.backgroundColor = `${color}1A`;
		overlay.style.top = `${rect.top}px`;
		overlay.style.left = `${rect.left}px`;
		overlay.style.width = `${rect.width}px`;
		overlay.style.height = `${rect.height}px`;
		const label = document.createElement('div');
		label.textContent = String(index);
		label.style.position = 'fixed';
		label.style.background = color;
		label.style.color = 'white';
		label.style.fontSize = '12px';
		label.style.padding = '1px 4px';
		label.style.borderRadius = '4px';
		label.style.top = `${Math.max(0, rect.top - 2)}px`;
		label.style.left = `${Math.max(0, rect.right - 22)}px`;
		container.appendChild(overlay);
		container.appendChild(label);
	};

	const buildDomTree = (node) => {
		if (!node) return null;
		if (node.nodeType === Node.TEXT_NODE) {
			const text = (node.textContent || '').trim();
			if (!text) return null;
			const id = String(idCounter++);
			map[id] = { type: 'TEXT_NODE', text, isVisible: isVisible(node.parentElement) };
			return id;
		}
		if (node.nodeType !== Node.ELEMENT_NODE) return null;

		const el = node;
		const tagName = el.tagName.toLowerCase();
		if (skippedTags.has(tagName) || el.id === containerId) return null;

		const attributes = {};
		for (const attr of Array.from(el.attributes)) attributes[attr.name] = String(attr.value);

		const visible = isVisible(el);
		const interactive = isInteractive(el);
		const top = visible && isTopElement(el);
		const nodeData = {
			tagName,
			xpath: getXPath(el),
			attributes,
			children: [],
			isVisible: visible,
			isInteractive: interactive,
			isTopElement: top,
			shadowRoot: !!el.shadowRoot,
		};

		if (interactive && visible && top) {
			nodeData.highlightIndex = highlightIndex++;
			if (doHighlightElements && (focusHighlightIndex < 0 || focusHighlightIndex === nodeData.highlightIndex)) {
				highlight(el, nodeData.highlightIndex);
			}
		}

		const childNodes = [];
		if (el.shadowRoot) childNodes.push(...Array.from(el.shadowRoot.childNodes));
		if (tagName === 'iframe') {
			try {
				const frameBody = el.contentDocument && el.contentDocument.body;
				if (frameBody) childNodes.push(frameBody);
			} catch (_) {}
		}
		childNodes.push(...Array.from(el.childNodes));

		for (const child of childNodes) {
			const childId = buildDomTree(child);
			if (childId !== null) nodeData.children.push(childId);
		}

		const id = String(idCounter++);
		map[id] = nodeData;
		return id;
	};

	const rootId = buildDomTree(document.body);
	return { rootId, map };
})();
"""

SCROLL_INFO_SCRIPT = """
return {
	scrollY: window.scrollY || window.pageYOffset || 0,
	innerHeight: window.innerHeight || 0,
	scrollHeight: Math.max(document.documentElement.scrollHeight, document.body ? document.body.scrollHeight : 0),
};
"""

_SAFE_CSS_ATTRIBUTES = {
	'id',
	'name',
	'type',
	'placeholder',
	'aria-label',
	'aria-labelledby',
	'aria-describedby',
	'role',
	'for',
	'autocomplete',
	'required',
	'readonly',
	'alt',
	'title',
	'src',
	'href',
	'target',
	'data-id',
	'data-qa',
	'data-cy',
	'data-testid',
}
_VALID_CLASS_NAME = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_-]*$')


class ScriptRunner(Protocol):
	async def execute_js(self, expression: str, *args: Any) -> Any: ...


def convert_simple_xpath_to_css_selector(xpath: str) -> str:
	if not xpath:
		return ''

	css_parts: list[str] = []
	for part in xpath.lstrip('/').split('/'):
		if not part:
			continue
		if '[' not in part:
			css_parts.append(part)
			continue
		base_part = part[: part.find('[')]
		for index in (chunk.strip('[]') for chunk in part[part.find('[') :].split(']')[:-1]):
			if index.isdigit():
				base_part += f':nth-of-type({int(index)})'
			elif index == 'last()':
				base_part += ':last-of-type'
			elif 'position()' in index and '>1' in index:
				base_part += ':nth-of-type(n+2)'
		css_parts.append(base_part)

	return ' > '.join(css_parts)


def enhanced_css_selector_for_element(element: DOMElementNode) -> str:
	"""Best-effort CSS selector combining the positional path with stable attributes."""
	css_selector = convert_simple_xpath_to_css_selector(element.xpath)

	for class_name in element.attributes.get('class', '').split():
		if _VALID_CLASS_NAME.match(class_name):
			css_selector += f'.{class_name}'

	for attribute, value in element.attributes.items():
		if attribute == 'class' or attribute not in _SAFE_CSS_ATTRIBUTES:
			continue
		safe_attribute = attribute.replace(':', r'\:')
		if value == '':
			css_selector += f'[{safe_attribute}]'
		elif any(char in value for char in '"\'<>`\n\r\t'):
			collapsed_value = re.sub(r'\s+', ' ', value).strip().replace('"', '\\"')
			css_selector += f'[{safe_attribute}*="{collapsed_value}"]'
		else:
			css_selector += f'[{safe_attribute}="{value}"]'

	return css_selector


class DomService:
	"""Runs the DOM walker through the driver and turns its node map into a snapshot."""

	def __init__(self, driver: ScriptRunner):
		self.driver = driver

	@time_execution_async('--get_clickable_elements')
	async def get_clickable_elements(
		self,
		highlight_elements: bool = True,
		focus_element: int = -1,
		viewport_expansion: int = 0,
	) -> DOMState:
		element_tree, selector_map = await self._build_dom_tree(highlight_elements, focus_element, viewport_expansion)
		return DOMState(element_tree=element_tree, selector_map=selector_map)

	async def get_scroll_info(self) -> tuple[int, int]:
		"""Return (pixels_above, pixels_below) for the current viewport."""
		info = await self.driver.execute_js(SCROLL_INFO_SCRIPT)
		if not isinstance(info, dict):
			return 0, 0
		scroll_y = int(info.get('scrollY') or 0)
		inner_height = int(info.get('innerHeight') or 0)
		scroll_height = int(info.get('scrollHeight') or 0)
		return scroll_y, max(0, scroll_height - (scroll_y + inner_height))

	@time_execution_async('--build_dom_tree')
	async def _build_dom_tree(
		self,
		highlight_elements: bool,
		focus_element: int,
		viewport_expansion: int,
	) -> tuple[DOMElementNode, SelectorMap]:
		args = {
			'doHighlightElements': highlight_elements,
			'focusHighlightIndex': focus_element,
			'viewportExpansion': viewport_expansion,
			'containerId': HIGHLIGHT_CONTAINER_ID,
		}
		payload = await self.driver.execute_js(DOM_WALKER_SCRIPT, args)
		return self.construct_dom_tree(RawDOMTree.from_payload(payload))

	@staticmethod
	def construct_dom_tree(raw_tree: RawDOMTree) -> tuple[DOMElementNode, SelectorMap]:
		node_map: dict[str, DOMBaseNode] = {}
		selector_map: SelectorMap = {}

		for node_id, raw_node in raw_tree.map.items():
			node = DomService._parse_node(raw_node)
			node_map[node_id] = node
			if isinstance(node, DOMElementNode) and node.highlight_index is not None:
				if node.highlight_index in selector_map:
					logger.warning(f'Duplicate highlight index {node.highlight_index} in DOM walker output, keeping first')
					continue
				selector_map[node.highlight_index] = node

		for node_id, raw_node in raw_tree.map.items():
			if not isinstance(raw_node, RawDOMElementNode):
				continue
			parent = cast(DOMElementNode, node_map[node_id])
			for child_id in raw_node.children:
				child = node_map.get(child_id)
				if child is None:
					logger.debug(f'DOM walker child {child_id} of node {node_id} missing from map')
					continue
				parent.append_child(child)

		root = node_map.get(raw_tree.root_id)
		if not isinstance(root, DOMElementNode):
			raise ValueError('Failed to parse DOM walker output: root element missing')

		return root, selector_map

	@staticmethod
	def _parse_node(raw_node: RawDOMTextNode | RawDOMElementNode) -> DOMBaseNode:
		if isinstance(raw_node, RawDOMTextNode):
			return DOMTextNode(text=raw_node.text, is_visible=raw_node.is_visible)

		return DOMElementNode(
			tag_name=raw_node.tag_name,
			xpath=raw_node.xpath,
			attributes=dict(raw_node.attributes),
			is_visible=raw_node.is_visible,
			is_interactive=raw_node.is_interactive,
			is_top_element=raw_node.is_top_element,
			highlight_index=raw_node.highlight_index,
			shadow_root=raw_node.shadow_root,
		)
