import logging
import re
from collections.abc import Callable
from inspect import Parameter, Signature, iscoroutinefunction, signature
from typing import Any

from pydantic import BaseModel, Field, ValidationError, create_model

from browser_pilot.controller.registry.views import ActionModel, ActionRegistry, RegisteredAction
from browser_pilot.exceptions import ActionValidationError, BrowserError, BrowserPilotError
from browser_pilot.telemetry.service import NoopTelemetry, TelemetrySink
from browser_pilot.telemetry.views import ControllerRegisteredFunctionsTelemetryEvent, RegisteredFunction

logger = logging.getLogger(__name__)

# Keyword arguments the registry can inject into a handler; never part of the model-facing schema.
INJECTED_PARAMS = ('browser', 'page_extraction_llm', 'available_file_paths', 'has_sensitive_data')

_SECRET_PATTERN = re.compile(r'<secret>(.*?)</secret>')


def _resolved_signature(function: Callable) -> Signature:
	"""Signature with postponed (string) annotations evaluated where the names are resolvable"""
	try:
		return signature(function, eval_str=True)
	except NameError:
		# annotations naming classes local to an enclosing function stay as strings
		return signature(function)


class Registry:
	"""Service for registering and managing actions"""

	def __init__(self, exclude_actions: list[str] | None = None, telemetry: TelemetrySink | None = None):
		self.registry = ActionRegistry()
		self.exclude_actions = exclude_actions or []
		self.telemetry: TelemetrySink = telemetry or NoopTelemetry()

	def _create_param_model(self, function: Callable) -> type[BaseModel]:
		"""Creates a Pydantic model from function signature"""
		sig = _resolved_signature(function)
		params = {
			name: (param.annotation, ... if param.default is Parameter.empty else param.default)
			for name, param in sig.parameters.items()
			if name not in INJECTED_PARAMS
		}
		return create_model(f'{function.__name__}_parameters', __base__=BaseModel, **params)  # type: ignore[call-overload]

	def register(
		self,
		name: str,
		description: str,
		function: Callable,
		param_model: type[BaseModel] | None = None,
	) -> None:
		if name in self.exclude_actions:
			logger.debug(f'Skipping excluded action {name}')
			return
		if not iscoroutinefunction(function):
			raise TypeError(f'Action {name} must be an async function')

		self.registry.actions[name] = RegisteredAction(
			name=name,
			description=description,
			function=function,
			param_model=param_model or self._create_param_model(function),
		)
		logger.debug(f'Registered action {name}')

	def action(self, description: str, param_model: type[BaseModel] | None = None, name: str | None = None):
		"""Decorator for registering actions"""

		def decorator(func: Callable) -> Callable:
			self.register(name or func.__name__, description, func, param_model)
			return func

		return decorator

	@staticmethod
	def _takes_param_model(function: Callable, param_model: type[BaseModel]) -> bool:
		parameters = list(_resolved_signature(function).parameters.values())
		if not parameters:
			return False
		annotation = parameters[0].annotation
		if isinstance(annotation, str):
			return annotation == param_model.__name__
		return isinstance(annotation, type) and issubclass(annotation, BaseModel) and annotation is param_model

	def _replace_sensitive_data(self, params: BaseModel, sensitive_data: dict[str, str]) -> BaseModel:
		"""Replaces <secret>NAME</secret> placeholders in every string parameter with the real value"""

		def replace_secrets(value: Any) -> Any:
			if isinstance(value, str):

				def _substitute(match: re.Match[str]) -> str:
					placeholder = match.group(1)
					if placeholder not in sensitive_data:
						logger.warning(f'No sensitive data value found for placeholder {placeholder}')
						return match.group(0)
					return sensitive_data[placeholder]

				return _SECRET_PATTERN.sub(_substitute, value)
			if isinstance(value, dict):
				return {k: replace_secrets(v) for k, v in value.items()}
			if isinstance(value, list):
				return [replace_secrets(v) for v in value]
			return value

		return type(params).model_validate(replace_secrets(params.model_dump()))

	async def execute_action(
		self,
		action_name: str,
		params: dict[str, Any],
		browser: Any | None = None,
		page_extraction_llm: Any | None = None,
		sensitive_data: dict[str, str] | None = None,
		available_file_paths: list[str] | None = None,
	) -> Any:
		"""Execute a registered action"""
		if action_name not in self.registry.actions:
			raise ActionValidationError(f'Action {action_name} not found')

		action = self.registry.actions[action_name]
		try:
			validated_params = action.param_model(**params)
		except ValidationError as e:
			raise ActionValidationError(f'Invalid parameters {params} for action {action_name}: {e.errors()}') from e

		if sensitive_data:
			validated_params = self._replace_sensitive_data(validated_params, sensitive_data)

		parameter_names = set(signature(action.function).parameters)
		available_extras: dict[str, Any] = {
			'browser': browser,
			'page_extraction_llm': page_extraction_llm,
			'available_file_paths': available_file_paths,
			'has_sensitive_data': action_name == 'input_text' and bool(sensitive_data),
		}
		extra_args = {k: v for k, v in available_extras.items() if k in parameter_names}
		if 'browser' in extra_args and browser is None:
			raise ValueError(f'Action {action_name} requires browser but none provided.')

		try:
			if self._takes_param_model(action.function, action.param_model):
				return await action.function(validated_params, **extra_args)
			return await action.function(**validated_params.model_dump(), **extra_args)
		except BrowserPilotError:
			raise
		except Exception as e:
			raise BrowserError(message=f'Error executing action {action_name}: {type(e).__name__}: {e}') from e

	def create_action_model(self, include_actions: list[str] | None = None) -> type[ActionModel]:
		"""Creates a Pydantic model from registered actions"""
		actions = {
			name: action
			for name, action in self.registry.actions.items()
			if include_actions is None or name in include_actions
		}
		fields: dict[str, Any] = {
			name: (action.param_model | None, Field(default=None, description=action.description))
			for name, action in actions.items()
		}

		self.telemetry.capture(
			ControllerRegisteredFunctionsTelemetryEvent(
				registered_functions=[
					RegisteredFunction(name=name, params=action.param_model.model_json_schema())
					for name, action in actions.items()
				]
			)
		)

		return create_model('ActionModel', __base__=ActionModel, **fields)  # type: ignore[call-overload]

	def get_prompt_description(self) -> str:
		"""Get a description of all actions for the prompt"""
		return self.registry.get_prompt_description()
