"""Unit tests for the action Registry: schemas, validation, secrets and injection."""

import json

import pytest
from pydantic import BaseModel, ValidationError

from browser_pilot.agent.views import ActionResult
from browser_pilot.controller.registry.service import Registry
from browser_pilot.exceptions import ActionValidationError, BrowserError, NavigationBlockedError
from browser_pilot.telemetry.views import ControllerRegisteredFunctionsTelemetryEvent


class _TypeParams(BaseModel):
	index: int
	text: str


class _RecordingTelemetry:
	def __init__(self) -> None:
		self.events: list[object] = []

	def capture(self, event: object) -> None:
		self.events.append(event)


def _registry(**kwargs) -> tuple[Registry, list[tuple[str, object]]]:  # type: ignore[no-untyped-def]
	registry = Registry(**kwargs)
	calls: list[tuple[str, object]] = []

	@registry.action('Type text into an element', param_model=_TypeParams, name='input_text')
	async def input_text(params: _TypeParams, browser, has_sensitive_data: bool = False):  # type: ignore[no-untyped-def]
		calls.append(('input_text', (params.index, params.text, browser, has_sensitive_data)))
		return ActionResult(extracted_content=f'typed into {params.index}')

	@registry.action('Wait for a number of seconds')
	async def wait(seconds: int = 3, reason: str = ''):
		calls.append(('wait', (seconds, reason)))
		return f'waited {seconds}'

	return registry, calls


def test_register_builds_param_model_from_signature() -> None:
	registry, _ = _registry()
	param_model = registry.registry.actions['wait'].param_model

	assert param_model().model_dump() == {'seconds': 3, 'reason': ''}
	with pytest.raises(ValidationError):
		param_model(seconds='soon')


def test_register_rejects_sync_functions() -> None:
	registry = Registry()

	def not_async() -> None:
		return None

	with pytest.raises(TypeError, match='must be an async function'):
		registry.register('not_async', 'Not async', not_async)


def test_excluded_actions_are_not_registered() -> None:
	registry, _ = _registry(exclude_actions=['wait'])
	assert list(registry.registry.actions) == ['input_text']


def test_prompt_description_lists_parameters_without_titles() -> None:
	registry, _ = _registry()
	description = registry.get_prompt_description()

	assert description.splitlines()[0] == 'Type text into an element: '
	assert '"title"' not in description
	payload = description.splitlines()[1][len('{input_text: ') : -1]
	assert json.loads(payload) == {'index': {'type': 'integer'}, 'text': {'type': 'string'}}


@pytest.mark.asyncio
async def test_execute_unknown_action_raises_validation_error() -> None:
	registry, _ = _registry()
	with pytest.raises(ActionValidationError, match='Action fly not found'):
		await registry.execute_action('fly', {})


@pytest.mark.asyncio
async def test_execute_rejects_params_that_violate_the_schema() -> None:
	registry, calls = _registry()

	with pytest.raises(ActionValidationError, match='Invalid parameters') as exc_info:
		await registry.execute_action('input_text', {'index': 'first'}, browser=object())

	assert isinstance(exc_info.value, ValueError)
	assert 'index' in str(exc_info.value)
	assert calls == []


@pytest.mark.asyncio
async def test_execute_substitutes_secrets_and_flags_sensitive_input() -> None:
	registry, calls = _registry()
	browser = object()

	await registry.execute_action(
		'input_text',
		{'index': 2, 'text': 'user <secret>login</secret> pass <secret>pw</secret>'},
		browser=browser,
		sensitive_data={'login': 'alice', 'pw': 's3cret'},
	)

	assert calls == [('input_text', (2, 'user alice pass s3cret', browser, True))]


@pytest.mark.asyncio
async def test_execute_keeps_unknown_secret_placeholders() -> None:
	registry, calls = _registry()

	await registry.execute_action(
		'input_text', {'index': 0, 'text': '<secret>missing</secret>'}, browser=object(), sensitive_data={'pw': 'x'}
	)

	assert calls[0][1][1] == '<secret>missing</secret>'


@pytest.mark.asyncio
async def test_execute_passes_plain_kwargs_for_signature_models() -> None:
	registry, calls = _registry()

	result = await registry.execute_action('wait', {'seconds': 1})

	assert result == 'waited 1'
	assert calls == [('wait', (1, ''))]


@pytest.mark.asyncio
async def test_execute_requires_browser_when_the_handler_needs_one() -> None:
	registry, _ = _registry()
	with pytest.raises(ValueError, match='requires browser'):
		await registry.execute_action('input_text', {'index': 0, 'text': 'x'})


@pytest.mark.asyncio
async def test_execute_wraps_unexpected_errors_and_keeps_own_errors() -> None:
	registry = Registry()

	@registry.action('Explode')
	async def explode():
		raise KeyError('boom')

	@registry.action('Leave the allowed domains')
	async def escape():
		raise NavigationBlockedError(message='Navigation to non-allowed URL: https://evil.test')

	with pytest.raises(BrowserError, match='Error executing action explode: KeyError'):
		await registry.execute_action('explode', {})
	with pytest.raises(NavigationBlockedError):
		await registry.execute_action('escape', {})


def test_create_action_model_requires_exactly_one_action() -> None:
	registry, _ = _registry()
	action_model = registry.create_action_model()

	action = action_model.model_validate({'input_text': {'index': 4, 'text': 'hi'}})
	assert action.action_name == 'input_text'
	assert action.get_index() == 4

	action.set_index(9)
	assert action.model_dump(exclude_none=True) == {'input_text': {'index': 9, 'text': 'hi'}}

	with pytest.raises(ValidationError, match='Exactly one action'):
		action_model.model_validate({})
	with pytest.raises(ValidationError, match='Exactly one action'):
		action_model.model_validate({'input_text': {'index': 1, 'text': 'a'}, 'wait': {'seconds': 1}})


def test_create_action_model_can_restrict_actions() -> None:
	registry, _ = _registry()
	action_model = registry.create_action_model(include_actions=['wait'])

	assert list(action_model.model_fields) == ['wait']
	assert action_model.model_validate({'wait': {}}).get_index() is None


def test_create_action_model_reports_registered_functions() -> None:
	telemetry = _RecordingTelemetry()
	registry, _ = _registry(telemetry=telemetry)

	registry.create_action_model()

	(event,) = telemetry.events
	assert isinstance(event, ControllerRegisteredFunctionsTelemetryEvent)
	assert [f.name for f in event.registered_functions] == ['input_text', 'wait']
