import json
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator


class RegisteredAction(BaseModel):
	"""Model for a registered action"""

	model_config = ConfigDict(arbitrary_types_allowed=True)

	name: str
	description: str
	function: Callable
	param_model: type[BaseModel]

	def prompt_description(self) -> str:
		"""Get a description of the action for the prompt"""
		skip_keys = ['title']
		properties = self.param_model.model_json_schema().get('properties', {})
		params = {k: {sub_k: sub_v for sub_k, sub_v in v.items() if sub_k not in skip_keys} for k, v in properties.items()}
		return f'{self.description}: \n' + '{' + self.name + ': ' + json.dumps(params) + '}'


class ActionModel(BaseModel):
	"""Base model for dynamically created action models.

	A concrete subclass has one optional field per registered action; an instance
	selects exactly one of them.
	"""

	model_config = ConfigDict(arbitrary_types_allowed=True)

	@model_validator(mode='after')
	def _exactly_one_action(self) -> 'ActionModel':
		active = [name for name in type(self).model_fields if getattr(self, name) is not None]
		if len(active) != 1:
			raise ValueError(f'Exactly one action must be set per action model, got {len(active)}: {active}')
		return self

	@property
	def action_name(self) -> str:
		return next(name for name in type(self).model_fields if getattr(self, name) is not None)

	@property
	def params(self) -> BaseModel:
		return getattr(self, self.action_name)

	def get_index(self) -> int | None:
		"""Get the element index targeted by this action, if any"""
		return getattr(self.params, 'index', None)

	def set_index(self, index: int) -> None:
		"""Overwrite the element index targeted by this action"""
		params = self.params
		if hasattr(params, 'index'):
			params.index = index


class ActionRegistry(BaseModel):
	"""Model representing the action registry"""

	actions: dict[str, RegisteredAction] = {}

	def get_prompt_description(self) -> str:
		"""Get a description of all actions for the prompt"""
		return '\n'.join(action.prompt_description() for action in self.actions.values())
