from __future__ import annotations

import weakref
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


@dataclass(eq=False, kw_only=True)
class DOMBaseNode:
	is_visible: bool
	_parent_ref: weakref.ReferenceType[DOMElementNode] | None = field(default=None, init=False, repr=False)

	@property
	def parent(self) -> DOMElementNode | None:
		"""Non-owning pointer to the enclosing element; the snapshot root keeps the tree alive."""
		if self._parent_ref is None:
			return None
		return self._parent_ref()

	@parent.setter
	def parent(self, node: DOMElementNode | None) -> None:
		self._parent_ref = weakref.ref(node) if node is not None else None


@dataclass(eq=False, kw_only=True)
class DOMTextNode(DOMBaseNode):
	text: str
	type: str = 'TEXT_NODE'

	def has_parent_with_highlight_index(self) -> bool:
		current = self.parent
		while current is not None:
			if current.highlight_index is not None:
				return True
			current = current.parent
		return False


@dataclass(eq=False, kw_only=True)
class DOMElementNode(DOMBaseNode):
	"""One element of a page snapshot.

	``xpath`` is relative to the document root (``html/body/div[2]/button``);
	``highlight_index`` is set only for interactive elements and is unique within a snapshot.
	"""

	tag_name: str
	xpath: str
	attributes: dict[str, str] = field(default_factory=dict)
	children: list[DOMBaseNode] = field(default_factory=list)
	is_interactive: bool = False
	is_top_element: bool = False
	shadow_root: bool = False
	highlight_index: int | None = None

	def __repr__(self) -> str:
		tag_str = f'<{self.tag_name}'
		for key, value in self.attributes.items():
			tag_str += f' {key}="{value}"'
		tag_str += '>'

		extras = []
		if self.is_interactive:
			extras.append('interactive')
		if self.is_top_element:
			extras.append('top')
		if self.shadow_root:
			extras.append('shadow-root')
		if self.highlight_index is not None:
			extras.append(f'highlight:{self.highlight_index}')
		if extras:
			tag_str += f' [{", ".join(extras)}]'
		return tag_str

	def append_child(self, child: DOMBaseNode) -> None:
		child.parent = self
		self.children.append(child)

	def get_all_text_till_next_clickable_element(self, max_depth: int = -1) -> str:
		text_parts: list[str] = []

		def collect_text(node: DOMBaseNode, current_depth: int) -> None:
			if max_depth != -1 and current_depth > max_depth:
				return

			# a nested interactive element owns its own text
			if isinstance(node, DOMElementNode) and node is not self and node.highlight_index is not None:
				return

			if isinstance(node, DOMTextNode):
				text_parts.append(node.text)
			elif isinstance(node, DOMElementNode):
				for child in node.children:
					collect_text(child, current_depth + 1)

		collect_text(self, 0)
		return '\n'.join(text_parts).strip()

	def clickable_elements_to_string(self, include_attributes: list[str] | None = None) -> str:
		"""Render the interactive elements as ``[index]<tag attrs>text</tag>`` lines."""
		formatted_text: list[str] = []
		include_attributes = include_attributes or []

		def process_node(node: DOMBaseNode, depth: int) -> None:
			if isinstance(node, DOMElementNode):
				if node.highlight_index is not None:
					attributes_str = ''
					if include_attributes:
						attributes_str = ' ' + ' '.join(
							f'{key}="{node.attributes[key]}"' for key in include_attributes if key in node.attributes
						)
					text = node.get_all_text_till_next_clickable_element()
					formatted_text.append(
						f'[{node.highlight_index}]<{node.tag_name}{attributes_str.rstrip()}>{text}</{node.tag_name}>'
					)

				for child in node.children:
					process_node(child, depth + 1)

			elif isinstance(node, DOMTextNode):
				if not node.has_parent_with_highlight_index():
					formatted_text.append(f'[]{node.text}')

		process_node(self, 0)
		return '\n'.join(formatted_text)

	def get_file_upload_element(self, check_siblings: bool = True) -> DOMElementNode | None:
		if self.tag_name == 'input' and self.attributes.get('type') == 'file':
			return self

		for child in self.children:
			if isinstance(child, DOMElementNode):
				result = child.get_file_upload_element(check_siblings=False)
				if result:
					return result

		if check_siblings and self.parent is not None:
			for sibling in self.parent.children:
				if sibling is not self and isinstance(sibling, DOMElementNode):
					result = sibling.get_file_upload_element(check_siblings=False)
					if result:
						return result

		return None


SelectorMap = dict[int, DOMElementNode]


@dataclass
class DOMState:
	element_tree: DOMElementNode
	selector_map: SelectorMap


class RawDOMElementNode(BaseModel):
	"""Element entry emitted by the in-page DOM walker."""

	model_config = ConfigDict(extra='ignore', populate_by_name=True)

	tag_name: str = Field(alias='tagName')
	xpath: str = ''
	attributes: dict[str, str] = Field(default_factory=dict)
	children: list[str] = Field(default_factory=list)
	is_visible: bool = Field(default=False, alias='isVisible')
	is_interactive: bool = Field(default=False, alias='isInteractive')
	is_top_element: bool = Field(default=False, alias='isTopElement')
	highlight_index: int | None = Field(default=None, alias='highlightIndex')
	shadow_root: bool = Field(default=False, alias='shadowRoot')


class RawDOMTextNode(BaseModel):
	"""Text entry emitted by the in-page DOM walker."""

	model_config = ConfigDict(extra='ignore', populate_by_name=True)

	type: Literal['TEXT_NODE']
	text: str
	is_visible: bool = Field(default=False, alias='isVisible')


class RawDOMTree(BaseModel):
	"""Flat node map returned by the DOM walker: ``{"rootId": ..., "map": {id: node}}``."""

	model_config = ConfigDict(extra='ignore', populate_by_name=True)

	root_id: str = Field(alias='rootId')
	map: dict[str, RawDOMTextNode | RawDOMElementNode]

	@classmethod
	def from_payload(cls, payload: Any) -> RawDOMTree:
		return cls.model_validate(payload)
