from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from browser_pilot.dom.history_tree_processor.views import DOMHistoryElement
from browser_pilot.dom.views import DOMState


class TabInfo(BaseModel):
	"""Represents information about a browser tab."""

	model_config = ConfigDict(extra='forbid')

	page_id: int
	url: str
	title: str

	def __str__(self) -> str:
		return f'TabInfo(page_id={self.page_id}, url="{self.url}", title="{self.title}")'


@dataclass
class BrowserState(DOMState):
	"""One observation: the DOM snapshot plus page metadata."""

	url: str
	title: str
	tabs: list[TabInfo] = field(default_factory=list)
	screenshot: str | None = None
	pixels_above: int = 0
	pixels_below: int = 0


class BrowserStateHistory(BaseModel):
	"""Serialisable summary of a BrowserState, stored with each history entry."""

	model_config = ConfigDict(extra='forbid', populate_by_name=True)

	url: str
	title: str
	tabs: list[TabInfo] = Field(default_factory=list)
	interacted_element: list[DOMHistoryElement | None] = Field(default_factory=list, alias='interactedElement')
	screenshot: str | None = None

	def to_dict(self) -> dict[str, Any]:
		return self.model_dump(by_alias=True)
