"""Unit tests for the telemetry sinks."""

import pytest
from bubus import EventBus

from browser_pilot.telemetry.service import EventBusTelemetry, NoopTelemetry, TelemetrySink
from browser_pilot.telemetry.views import AgentStepTelemetryEvent


def _step_event(step: int = 1) -> AgentStepTelemetryEvent:
	return AgentStepTelemetryEvent(
		agent_id='agent-1234',
		step=step,
		step_error=[],
		consecutive_failures=0,
		actions=[{'click_element': {'index': 0}}],
	)


def test_sinks_satisfy_the_protocol() -> None:
	assert isinstance(NoopTelemetry(), TelemetrySink)
	assert isinstance(EventBusTelemetry(EventBus(name='TelemetryProtocolTest')), TelemetrySink)


def test_noop_sink_accepts_events() -> None:
	assert NoopTelemetry().capture(_step_event()) is None


@pytest.mark.asyncio
async def test_event_bus_sink_delivers_events_to_subscribers() -> None:
	bus = EventBus(name='TelemetryDeliveryTest')
	telemetry = EventBusTelemetry(bus)
	received: list[int] = []

	async def on_step(event: AgentStepTelemetryEvent) -> None:
		received.append(event.step)

	bus.on(AgentStepTelemetryEvent, on_step)

	telemetry.capture(_step_event(1))
	telemetry.capture(_step_event(2))
	await bus.wait_until_idle()

	assert received == [1, 2]
	await telemetry.close()
