import hashlib

from browser_pilot.dom.history_tree_processor.views import DOMHistoryElement, HashedDomElement
from browser_pilot.dom.service import enhanced_css_selector_for_element
from browser_pilot.dom.views import DOMElementNode


def _sha256(value: str) -> str:
	return hashlib.sha256(value.encode()).hexdigest()


class HistoryTreeProcessor:
	"""Element identity: fingerprints elements and finds historical elements in fresh snapshots.

	A fingerprint is the triplet (branch path hash, attributes hash, xpath hash). Two
	elements are the same only when all three components are equal; no fuzzy matching.
	"""

	@staticmethod
	def convert_dom_element_to_history_element(dom_element: DOMElementNode) -> DOMHistoryElement:
		parent_branch_path = HistoryTreeProcessor._get_parent_branch_path(dom_element)
		return DOMHistoryElement(
			tag_name=dom_element.tag_name,
			xpath=dom_element.xpath,
			highlight_index=dom_element.highlight_index,
			entire_parent_branch_path=parent_branch_path,
			attributes=dict(dom_element.attributes),
			shadow_root=dom_element.shadow_root,
			css_selector=enhanced_css_selector_for_element(dom_element),
		)

	@staticmethod
	def find_history_element_in_tree(dom_history_element: DOMHistoryElement, tree: DOMElementNode) -> DOMElementNode | None:
		"""Depth-first search for the first interactive node whose fingerprint matches; None when the page changed."""
		hashed_dom_history_element = HistoryTreeProcessor.hash_history_element(dom_history_element)

		def process_node(node: DOMElementNode) -> DOMElementNode | None:
			if node.highlight_index is not None:
				if HistoryTreeProcessor.hash_dom_element(node) == hashed_dom_history_element:
					return node
			for child in node.children:
				if isinstance(child, DOMElementNode):
					result = process_node(child)
					if result is not None:
						return result
			return None

		return process_node(tree)

	@staticmethod
	def compare_history_element_and_dom_element(dom_history_element: DOMHistoryElement, dom_element: DOMElementNode) -> bool:
		return HistoryTreeProcessor.hash_history_element(dom_history_element) == HistoryTreeProcessor.hash_dom_element(
			dom_element
		)

	@staticmethod
	def same_element(a: HashedDomElement, b: HashedDomElement) -> bool:
		return (
			a.branch_path_hash == b.branch_path_hash
			and a.attributes_hash == b.attributes_hash
			and a.xpath_hash == b.xpath_hash
		)

	@staticmethod
	def hash_history_element(dom_history_element: DOMHistoryElement) -> HashedDomElement:
		return HashedDomElement(
			branch_path_hash=HistoryTreeProcessor._parent_branch_path_hash(dom_history_element.entire_parent_branch_path),
			attributes_hash=HistoryTreeProcessor._attributes_hash(dom_history_element.attributes),
			xpath_hash=HistoryTreeProcessor._xpath_hash(dom_history_element.xpath),
		)

	@staticmethod
	def hash_dom_element(dom_element: DOMElementNode) -> HashedDomElement:
		parent_branch_path = HistoryTreeProcessor._get_parent_branch_path(dom_element)
		return HashedDomElement(
			branch_path_hash=HistoryTreeProcessor._parent_branch_path_hash(parent_branch_path),
			attributes_hash=HistoryTreeProcessor._attributes_hash(dom_element.attributes),
			xpath_hash=HistoryTreeProcessor._xpath_hash(dom_element.xpath),
		)

	@staticmethod
	def _get_parent_branch_path(dom_element: DOMElementNode) -> list[str]:
		"""Tag names from just below the root down to the element itself."""
		parents: list[DOMElementNode] = []
		current_element: DOMElementNode = dom_element
		while current_element.parent is not None:
			parents.append(current_element)
			current_element = current_element.parent

		parents.reverse()
		return [parent.tag_name for parent in parents]

	@staticmethod
	def _parent_branch_path_hash(parent_branch_path: list[str]) -> str:
		return _sha256('/'.join(parent_branch_path))

	@staticmethod
	def _attributes_hash(attributes: dict[str, str]) -> str:
		attributes_string = ''.join(f'{key}={value}' for key, value in sorted(attributes.items()))
		return _sha256(attributes_string)

	@staticmethod
	def _xpath_hash(xpath: str) -> str:
		return _sha256(xpath)
