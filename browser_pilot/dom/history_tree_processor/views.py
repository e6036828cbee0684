from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HashedDomElement(BaseModel):
	"""Structural fingerprint of a DOM element, compared component-wise for exact matches."""

	model_config = ConfigDict(frozen=True, extra='forbid')

	branch_path_hash: str
	attributes_hash: str
	xpath_hash: str


class DOMHistoryElement(BaseModel):
	"""Detached, serialisable copy of an interacted element, re-matched against fresh snapshots on replay."""

	model_config = ConfigDict(extra='forbid')

	tag_name: str
	xpath: str
	highlight_index: int | None = None
	entire_parent_branch_path: list[str] = Field(default_factory=list)
	attributes: dict[str, str] = Field(default_factory=dict)
	shadow_root: bool = False
	css_selector: str | None = None

	def to_dict(self) -> dict[str, Any]:
		return self.model_dump()
