from typing import Any

from bubus import BaseEvent
from pydantic import BaseModel


class RegisteredFunction(BaseModel):
	name: str
	params: dict[str, Any]


class ControllerRegisteredFunctionsTelemetryEvent(BaseEvent):
	registered_functions: list[RegisteredFunction]


class AgentRunTelemetryEvent(BaseEvent):
	agent_id: str
	task: str
	model_name: str
	use_vision: bool


class AgentStepTelemetryEvent(BaseEvent):
	agent_id: str
	step: int
	step_error: list[str]
	consecutive_failures: int
	actions: list[dict[str, Any]]


class AgentEndTelemetryEvent(BaseEvent):
	agent_id: str
	steps: int
	max_steps_reached: bool
	is_done: bool
	success: bool | None = None
	errors: list[str | None]
