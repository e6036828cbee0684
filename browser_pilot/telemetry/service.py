import logging
from typing import Protocol, runtime_checkable

from bubus import BaseEvent, EventBus
from uuid_extensions import uuid7str

logger = logging.getLogger(__name__)


@runtime_checkable
class TelemetrySink(Protocol):
	"""Receives agent lifecycle events; passed explicitly into each Agent."""

	def capture(self, event: BaseEvent) -> None: ...


class NoopTelemetry:
	def capture(self, event: BaseEvent) -> None:
		return None


class EventBusTelemetry:
	"""Dispatches telemetry events onto a bubus EventBus for in-process subscribers."""

	def __init__(self, event_bus: EventBus | None = None):
		self.event_bus = event_bus or EventBus(name=f'Telemetry_{uuid7str()[-4:]}')

	def capture(self, event: BaseEvent) -> None:
		try:
			self.event_bus.dispatch(event)
			logger.debug(f'Telemetry event dispatched: {event.event_type}')
		except Exception as e:
			logger.debug(f'Failed to dispatch telemetry event {event.event_type}: {type(e).__name__}: {e}')

	async def close(self) -> None:
		await self.event_bus.stop(clear=True, timeout=5)
