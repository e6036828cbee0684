from __future__ import annotations

import json
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model
from uuid_extensions import uuid7str

from browser_pilot.browser.views import BrowserStateHistory
from browser_pilot.controller.registry.views import ActionModel
from browser_pilot.dom.history_tree_processor.service import HistoryTreeProcessor
from browser_pilot.dom.history_tree_processor.views import DOMHistoryElement
from browser_pilot.dom.views import SelectorMap
from browser_pilot.exceptions import RateLimitedError
from browser_pilot.llm.base import BaseChatModel

HISTORY_FORMAT_VERSION = 1

DEFAULT_INCLUDE_ATTRIBUTES = [
	'title',
	'type',
	'name',
	'role',
	'tabindex',
	'aria-label',
	'placeholder',
	'value',
	'alt',
	'aria-expanded',
]


class AgentSettings(BaseModel):
	"""Options for the Agent"""

	model_config = ConfigDict(arbitrary_types_allowed=True)

	use_vision: bool = True
	save_conversation_path: str | None = None
	max_failures: int = Field(default=3, ge=1)
	retry_delay: float = Field(default=10, ge=0)
	max_input_tokens: int = 128000
	validate_output: bool = False
	message_context: str | None = None
	available_file_paths: list[str] | None = None
	include_attributes: list[str] = Field(default_factory=lambda: list(DEFAULT_INCLUDE_ATTRIBUTES))
	max_actions_per_step: int = Field(default=10, ge=1)
	max_error_length: int = 400

	page_extraction_llm: BaseChatModel | None = None
	planner_llm: BaseChatModel | None = None
	planner_interval: int = Field(default=1, ge=1)
	use_vision_for_planner: bool = False


class ActionResult(BaseModel):
	"""Result of executing an action"""

	is_done: bool = False
	extracted_content: str | None = None
	error: str | None = None
	include_in_memory: bool = False  # whether to include in past messages as context or not


class AgentState(BaseModel):
	"""Holds all state information for an Agent"""

	agent_id: str = Field(default_factory=uuid7str)
	n_steps: int = 1
	consecutive_failures: int = 0
	last_result: list[ActionResult] | None = None
	last_plan: str | None = None
	paused: bool = False
	stopped: bool = False


@dataclass
class AgentStepInfo:
	step_number: int
	max_steps: int


class AgentBrain(BaseModel):
	"""Current state of the agent"""

	page_summary: str = ''
	evaluation_previous_goal: str
	memory: str
	next_goal: str


class AgentOutput(BaseModel):
	"""Output model for agent

	@dev note: this model is extended with custom actions in the Agent -> type_with_custom_actions
	"""

	model_config = ConfigDict(arbitrary_types_allowed=True)

	current_state: AgentBrain
	action: list[ActionModel] = Field(..., description='List of actions to execute')

	@staticmethod
	def type_with_custom_actions(custom_actions: type[ActionModel]) -> type[AgentOutput]:
		"""Extend actions with custom actions"""
		return create_model(
			'AgentOutput',
			__base__=AgentOutput,
			action=(list[custom_actions], Field(..., description='List of actions to execute')),  # type: ignore[valid-type]
			__module__=AgentOutput.__module__,
		)


class ValidationResult(BaseModel):
	"""Answer of the output validator: does the visible page satisfy the task"""

	is_valid: bool
	reason: str


class AgentHistory(BaseModel):
	"""History item for agent actions"""

	model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True, protected_namespaces=())

	model_output: AgentOutput | None = Field(alias='modelOutput')
	result: list[ActionResult]
	state: BrowserStateHistory

	@staticmethod
	def get_interacted_element(model_output: AgentOutput, selector_map: SelectorMap) -> list[DOMHistoryElement | None]:
		elements: list[DOMHistoryElement | None] = []
		for action in model_output.action:
			index = action.get_index()
			if index is not None and index in selector_map:
				elements.append(HistoryTreeProcessor.convert_dom_element_to_history_element(selector_map[index]))
			else:
				elements.append(None)
		return elements

	def model_dump(self, **kwargs) -> dict[str, Any]:
		"""Custom serialization handling the dynamically created action models"""
		model_output_dump = None
		if self.model_output:
			model_output_dump = {
				'current_state': self.model_output.current_state.model_dump(),
				'action': [action.model_dump(exclude_none=True) for action in self.model_output.action],
			}

		return {
			'modelOutput': model_output_dump,
			'result': [r.model_dump(exclude_none=True) for r in self.result],
			'state': self.state.to_dict(),
		}


class AgentHistoryList(BaseModel):
	"""List of agent history items"""

	history: list[AgentHistory] = Field(default_factory=list)

	def __str__(self) -> str:
		return f'AgentHistoryList(all_results={self.action_results()}, all_model_outputs={self.model_actions()})'

	def __repr__(self) -> str:
		return self.__str__()

	def add_item(self, history_item: AgentHistory) -> None:
		self.history.append(history_item)

	def model_dump(self, **kwargs) -> dict[str, Any]:
		return {
			'version': HISTORY_FORMAT_VERSION,
			'history': [h.model_dump(**kwargs) for h in self.history],
		}

	def save_to_file(self, filepath: str | Path) -> None:
		"""Save history to JSON file with proper serialization"""
		path = Path(filepath)
		path.parent.mkdir(parents=True, exist_ok=True)
		path.write_text(json.dumps(self.model_dump(), indent=2), encoding='utf-8')

	@classmethod
	def load_from_dict(cls, data: dict[str, Any], output_model: type[AgentOutput]) -> AgentHistoryList:
		version = data.get('version', HISTORY_FORMAT_VERSION)
		if not isinstance(version, int) or version > HISTORY_FORMAT_VERSION:
			raise ValueError(f'Unsupported history format version {version!r}, expected at most {HISTORY_FORMAT_VERSION}')

		history = []
		for h in data.get('history', []):
			model_output = h.get('modelOutput', h.get('model_output'))
			state = dict(h['state'])
			state.setdefault('interactedElement', state.pop('interacted_element', []))
			history.append(
				AgentHistory(
					model_output=output_model.model_validate(model_output) if isinstance(model_output, dict) else None,
					result=[ActionResult.model_validate(r) for r in h.get('result', [])],
					state=BrowserStateHistory.model_validate(state),
				)
			)
		return cls(history=history)

	@classmethod
	def load_from_file(cls, filepath: str | Path, output_model: type[AgentOutput]) -> AgentHistoryList:
		"""Load history from JSON file"""
		data = json.loads(Path(filepath).read_text(encoding='utf-8'))
		return cls.load_from_dict(data, output_model)

	def last_action(self) -> None | dict:
		"""Last action in history"""
		if self.history and self.history[-1].model_output and self.history[-1].model_output.action:
			return self.history[-1].model_output.action[-1].model_dump(exclude_none=True)
		return None

	def errors(self) -> list[str | None]:
		"""Get all errors from history, with None for steps without errors"""
		errors = []
		for h in self.history:
			step_errors = [r.error for r in h.result if r.error]
			errors.append(step_errors[0] if step_errors else None)
		return errors

	def final_result(self) -> None | str:
		"""Final result from history"""
		if self.history and self.history[-1].result and self.history[-1].result[-1].extracted_content:
			return self.history[-1].result[-1].extracted_content
		return None

	def is_done(self) -> bool:
		"""Check if the agent is done"""
		if self.history and self.history[-1].result:
			return self.history[-1].result[-1].is_done
		return False

	def has_errors(self) -> bool:
		"""Check if the agent has any non-None errors"""
		return any(error is not None for error in self.errors())

	def urls(self) -> list[str | None]:
		"""Get all unique URLs from history"""
		return [h.state.url if h.state.url is not None else None for h in self.history]

	def screenshots(self) -> list[str | None]:
		"""Get all screenshots from history"""
		return [h.state.screenshot for h in self.history]

	def action_names(self) -> list[str]:
		"""Get all action names from history"""
		action_names = []
		for action in self.model_actions():
			actions = [key for key in action if key != 'interacted_element']
			if actions:
				action_names.append(actions[0])
		return action_names

	def model_thoughts(self) -> list[AgentBrain]:
		"""Get all thoughts from history"""
		return [h.model_output.current_state for h in self.history if h.model_output]

	def model_outputs(self) -> list[AgentOutput]:
		"""Get all model outputs from history"""
		return [h.model_output for h in self.history if h.model_output]

	def model_actions(self) -> list[dict]:
		"""Get all actions from history"""
		outputs = []
		for h in self.history:
			if h.model_output:
				interacted_elements = h.state.interacted_element or [None] * len(h.model_output.action)
				for action, interacted_element in zip(h.model_output.action, interacted_elements):
					output = action.model_dump(exclude_none=True)
					output['interacted_element'] = interacted_element
					outputs.append(output)
		return outputs

	def action_results(self) -> list[ActionResult]:
		"""Get all results from history"""
		results = []
		for h in self.history:
			results.extend([r for r in h.result if r])
		return results

	def extracted_content(self) -> list[str]:
		"""Get all extracted content from history"""
		content = []
		for h in self.history:
			content.extend([r.extracted_content for r in h.result if r.extracted_content])
		return content

	def model_actions_filtered(self, include: list[str] | None = None) -> list[dict]:
		"""Get all model actions from history as JSON"""
		if include is None:
			include = []
		return [o for o in self.model_actions() if next(iter(o)) in include]


class AgentError:
	"""Container for agent error handling"""

	VALIDATION_ERROR = 'Invalid model output format. Please follow the correct schema.'
	RATE_LIMIT_ERROR = 'Rate limit reached. Waiting before retry.'

	@staticmethod
	def format_error(error: Exception, include_trace: bool = False) -> str:
		"""Format error message based on error type and optionally include trace"""
		if isinstance(error, ValidationError):
			return f'{AgentError.VALIDATION_ERROR}\nDetails: {str(error)}'
		if isinstance(error, RateLimitedError):
			return AgentError.RATE_LIMIT_ERROR
		if include_trace:
			return f'{str(error)}\nStacktrace:\n{traceback.format_exc()}'
		return f'{str(error)}'
