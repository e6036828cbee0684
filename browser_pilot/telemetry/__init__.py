from browser_pilot.telemetry.service import EventBusTelemetry, NoopTelemetry, TelemetrySink
from browser_pilot.telemetry.views import (
	AgentEndTelemetryEvent,
	AgentRunTelemetryEvent,
	AgentStepTelemetryEvent,
	ControllerRegisteredFunctionsTelemetryEvent,
	RegisteredFunction,
)

__all__ = [
	'AgentEndTelemetryEvent',
	'AgentRunTelemetryEvent',
	'AgentStepTelemetryEvent',
	'ControllerRegisteredFunctionsTelemetryEvent',
	'EventBusTelemetry',
	'NoopTelemetry',
	'RegisteredFunction',
	'TelemetrySink',
]
