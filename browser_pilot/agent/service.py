from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import anyio

from browser_pilot.agent.message_manager.service import MessageManager, MessageManagerSettings
from browser_pilot.agent.prompts import AgentMessagePrompt, PlannerPrompt, SystemPrompt
from browser_pilot.agent.views import (
	ActionResult,
	AgentError,
	AgentHistory,
	AgentHistoryList,
	AgentOutput,
	AgentSettings,
	AgentState,
	AgentStepInfo,
	ValidationResult,
)
from browser_pilot.browser.context import BrowserContext
from browser_pilot.browser.views import BrowserState, BrowserStateHistory
from browser_pilot.controller.registry.views import ActionModel
from browser_pilot.controller.service import Controller
from browser_pilot.dom.history_tree_processor.service import HistoryTreeProcessor
from browser_pilot.dom.history_tree_processor.views import DOMHistoryElement
from browser_pilot.exceptions import (
	AgentInterruptedError,
	ContextOverflowError,
	ElementNotFoundError,
	OutputParseError,
	RateLimitedError,
	TokenLimitExceededError,
)
from browser_pilot.llm.base import BaseChatModel
from browser_pilot.llm.messages import BaseMessage, SystemMessage, UserMessage
from browser_pilot.telemetry.service import NoopTelemetry, TelemetrySink
from browser_pilot.telemetry.views import AgentEndTelemetryEvent, AgentRunTelemetryEvent, AgentStepTelemetryEvent
from browser_pilot.utils import extract_json_from_model_output, time_execution_async

PAUSE_POLL_INTERVAL = 0.2


class Agent:
	def __init__(
		self,
		task: str,
		llm: BaseChatModel,
		browser_context: BrowserContext | None = None,
		controller: Controller | None = None,
		sensitive_data: dict[str, str] | None = None,
		initial_actions: list[dict[str, dict[str, Any]]] | None = None,
		telemetry: TelemetrySink | None = None,
		system_prompt_class: type[SystemPrompt] = SystemPrompt,
		injected_agent_state: AgentState | None = None,
		# Agent settings
		use_vision: bool = True,
		save_conversation_path: str | None = None,
		max_failures: int = 3,
		retry_delay: float = 10,
		max_input_tokens: int = 128000,
		validate_output: bool = False,
		message_context: str | None = None,
		available_file_paths: list[str] | None = None,
		include_attributes: list[str] | None = None,
		max_actions_per_step: int = 10,
		max_error_length: int = 400,
		page_extraction_llm: BaseChatModel | None = None,
		planner_llm: BaseChatModel | None = None,
		planner_interval: int = 1,
		use_vision_for_planner: bool = False,
	):
		self.task = task
		self.llm = llm
		self.sensitive_data = sensitive_data
		self.telemetry: TelemetrySink = telemetry or NoopTelemetry()

		settings: dict[str, Any] = {}
		if include_attributes is not None:
			settings['include_attributes'] = include_attributes
		self.settings = AgentSettings(
			use_vision=use_vision,
			save_conversation_path=save_conversation_path,
			max_failures=max_failures,
			retry_delay=retry_delay,
			max_input_tokens=max_input_tokens,
			validate_output=validate_output,
			message_context=message_context,
			available_file_paths=available_file_paths,
			max_actions_per_step=max_actions_per_step,
			max_error_length=max_error_length,
			page_extraction_llm=page_extraction_llm or llm,
			planner_llm=planner_llm,
			planner_interval=planner_interval,
			use_vision_for_planner=use_vision_for_planner,
			**settings,
		)

		self.state = injected_agent_state or AgentState()
		self.history = AgentHistoryList()

		self.injected_browser_context = browser_context is not None
		self.browser_context = browser_context or BrowserContext()
		self.controller = controller or Controller(telemetry=self.telemetry)

		self._setup_action_models()
		self.action_descriptions = self.controller.registry.get_prompt_description()
		self.initial_actions = self._convert_initial_actions(initial_actions) if initial_actions else None

		self.message_manager = MessageManager(
			task=task,
			system_message=system_prompt_class(
				self.action_descriptions, max_actions_per_step=self.settings.max_actions_per_step
			).get_system_message(),
			settings=MessageManagerSettings(
				max_input_tokens=self.settings.max_input_tokens,
				include_attributes=self.settings.include_attributes,
				message_context=self.settings.message_context,
				sensitive_data=sensitive_data,
				available_file_paths=self.settings.available_file_paths,
				max_error_length=self.settings.max_error_length,
			),
		)

	@property
	def logger(self) -> logging.Logger:
		return logging.getLogger(f'browser_pilot.Agent🅐 {self.state.agent_id[-4:]}')

	def _setup_action_models(self) -> None:
		"""Setup dynamic action models from controller's registry"""
		self.ActionModel = self.controller.registry.create_action_model()
		self.AgentOutput = AgentOutput.type_with_custom_actions(self.ActionModel)

	def _convert_initial_actions(self, actions: list[dict[str, dict[str, Any]]]) -> list[ActionModel]:
		"""Convert dictionary-based actions to ActionModel instances"""
		converted_actions = []
		for action_dict in actions:
			# Each action_dict should have a single key-value pair
			action_name = next(iter(action_dict))
			params = action_dict[action_name]

			action_info = self.controller.registry.registry.actions[action_name]
			validated_params = action_info.param_model(**params)
			converted_actions.append(self.ActionModel(**{action_name: validated_params}))
		return converted_actions

	# Control flow ------------------------------------------------------------

	def _raise_if_stopped_or_paused(self) -> None:
		"""Checkpoint for cooperative cancellation"""
		if self.state.stopped or self.state.paused:
			self.logger.debug('Agent paused after getting state')
			raise AgentInterruptedError('Agent paused or stopped at a checkpoint')

	def pause(self) -> None:
		"""Pause the agent before the next step"""
		self.logger.info('🔄 pausing Agent ')
		self.state.paused = True

	def resume(self) -> None:
		"""Resume the agent"""
		self.logger.info('▶️ Agent resuming')
		self.state.paused = False

	def stop(self) -> None:
		"""Stop the agent"""
		self.logger.info('⏹️ Agent stopping')
		self.state.stopped = True

	def add_new_task(self, new_task: str) -> None:
		self.task = new_task
		self.message_manager.add_new_task(new_task)

	# Step --------------------------------------------------------------------

	@time_execution_async('--step')
	async def step(self, step_info: AgentStepInfo | None = None) -> None:
		"""Execute one step of the task"""
		self.logger.info(f'📍 Step {self.state.n_steps}')
		state: BrowserState | None = None
		model_output: AgentOutput | None = None
		result: list[ActionResult] = []
		interrupted = False

		try:
			state = await self.browser_context.get_state()
			self._raise_if_stopped_or_paused()

			self.message_manager.add_state_message(state, self.state.last_result, step_info, self.settings.use_vision)

			# Run planner at specified intervals if planner is configured
			if self.settings.planner_llm and self.state.n_steps % self.settings.planner_interval == 0:
				plan = await self._run_planner()
				# add plan before last state message
				self.message_manager.add_plan(plan, position=-1)

			input_messages = self.message_manager.get_messages()

			try:
				model_output = await self.get_next_action(input_messages)
			except Exception:
				self.message_manager._remove_last_state_message()
				raise

			await self._save_conversation(input_messages, model_output)
			self.message_manager._remove_last_state_message()  # we dont want the whole state in the chat history

			self._raise_if_stopped_or_paused()
			self.message_manager.add_model_output(model_output)

			if model_output.action:
				result = await self.controller.multi_act(
					model_output.action,
					self.browser_context,
					check_break_if_paused=self._raise_if_stopped_or_paused,
					page_extraction_llm=self.settings.page_extraction_llm,
					sensitive_data=self.sensitive_data,
					available_file_paths=self.settings.available_file_paths,
				)
				self.state.consecutive_failures = 0
			else:
				self.logger.warning('Model returned no actions, nothing to execute in this step')
			self.state.last_result = result

			if result and result[-1].is_done:
				self.logger.info(f'📄 Result: {result[-1].extracted_content}')

		except AgentInterruptedError:
			self.logger.debug('Agent paused')
			self.state.last_result = [
				ActionResult(
					error='The agent was paused - now continuing actions might need to be repeated', include_in_memory=True
				)
			]
			interrupted = True
		except Exception as e:
			result = await self._handle_step_error(e)
			self.state.last_result = result

		finally:
			actions = [a.model_dump(exclude_unset=True) for a in model_output.action] if model_output else []
			self.telemetry.capture(
				AgentStepTelemetryEvent(
					agent_id=self.state.agent_id,
					step=self.state.n_steps,
					actions=actions,
					consecutive_failures=self.state.consecutive_failures,
					step_error=[r.error for r in result if r.error] if result else ['No result'],
				)
			)
			if state and not interrupted:
				self._make_history_item(model_output, state, result)

	async def _handle_step_error(self, error: Exception) -> list[ActionResult]:
		"""Handle all types of errors that can occur during a step"""
		include_trace = self.logger.isEnabledFor(logging.DEBUG)
		error_msg = AgentError.format_error(error, include_trace=include_trace)
		prefix = f'❌ Result failed {self.state.consecutive_failures + 1}/{self.settings.max_failures} times:\n '

		if isinstance(error, TokenLimitExceededError):
			self.logger.error(f'{prefix}{error_msg}')
			# cut tokens from history
			self.message_manager.settings.max_input_tokens = self.settings.max_input_tokens - 500
			self.logger.info(
				f'Cutting tokens from history - new max input tokens: {self.message_manager.settings.max_input_tokens}'
			)
			try:
				self.message_manager.cut_messages()
			except ContextOverflowError as overflow:
				self.logger.error(f'{prefix}{overflow}')
				self.state.consecutive_failures += 1
				error_msg = AgentError.format_error(overflow)
		elif isinstance(error, OutputParseError):
			self.logger.error(f'{prefix}{error_msg}')
			# give model a hint how output should look like
			hint = '\n\nReturn a valid JSON object with the required fields.'
			return [ActionResult(error=error_msg[: self.settings.max_error_length] + hint, include_in_memory=True)]
		elif isinstance(error, RateLimitedError):
			self.logger.warning(f'{prefix}{error_msg}')
			await asyncio.sleep(self.settings.retry_delay)
		else:
			self.logger.error(f'{prefix}{error_msg}')
			self.state.consecutive_failures += 1

		return [ActionResult(error=error_msg[: self.settings.max_error_length], include_in_memory=True)]

	def _make_history_item(self, model_output: AgentOutput | None, state: BrowserState, result: list[ActionResult]) -> None:
		"""Create and store history item"""
		interacted_elements: list[DOMHistoryElement | None]
		if model_output:
			interacted_elements = AgentHistory.get_interacted_element(model_output, state.selector_map)
		else:
			interacted_elements = [None]

		state_history = BrowserStateHistory(
			url=state.url,
			title=state.title,
			tabs=state.tabs,
			interacted_element=interacted_elements,
			screenshot=state.screenshot,
		)
		self.history.add_item(AgentHistory(model_output=model_output, result=result, state=state_history))

	@time_execution_async('--get_next_action')
	async def get_next_action(self, input_messages: list[BaseMessage]) -> AgentOutput:
		"""Get next action from LLM based on current state"""
		response = await self.llm.ainvoke(input_messages, output_format=self.AgentOutput)
		parsed = response.completion
		if parsed is None:
			raise OutputParseError('Could not parse response.')

		# cut the number of actions to max_actions_per_step
		if len(parsed.action) > self.settings.max_actions_per_step:
			parsed.action = parsed.action[: self.settings.max_actions_per_step]

		self._log_response(parsed)
		self.state.n_steps += 1
		return parsed

	def _log_response(self, response: AgentOutput) -> None:
		"""Log the model's response"""
		if 'Success' in response.current_state.evaluation_previous_goal:
			emoji = '👍'
		elif 'Failed' in response.current_state.evaluation_previous_goal:
			emoji = '⚠'
		else:
			emoji = '🤷'

		self.logger.debug(f'🤖 {emoji} Page summary: {response.current_state.page_summary}')
		self.logger.info(f'{emoji} Eval: {response.current_state.evaluation_previous_goal}')
		self.logger.info(f'🧠 Memory: {response.current_state.memory}')
		self.logger.info(f'🎯 Next goal: {response.current_state.next_goal}')
		for i, action in enumerate(response.action):
			self.logger.info(f'🛠️  Action {i + 1}/{len(response.action)}: {action.model_dump_json(exclude_unset=True)}')

	async def _save_conversation(self, input_messages: list[BaseMessage], response: AgentOutput) -> None:
		"""Save conversation history to file if path is provided"""
		if not self.settings.save_conversation_path:
			return

		target = anyio.Path(f'{self.settings.save_conversation_path}_{self.state.n_steps}.txt')
		await target.parent.mkdir(parents=True, exist_ok=True)

		lines: list[str] = []
		for message in input_messages:
			lines.append(f' {message.role} ')
			lines.append(message.text)
			lines.append('')
		lines.append(' RESPONSE')
		lines.append(json.dumps(json.loads(response.model_dump_json(exclude_unset=True)), indent=2))
		await target.write_text('\n'.join(lines), encoding='utf-8')

	# Run ---------------------------------------------------------------------

	def _log_agent_run(self) -> None:
		"""Log the agent run"""
		self.logger.info(f'🚀 Starting task: {self.task}')
		self.telemetry.capture(
			AgentRunTelemetryEvent(
				agent_id=self.state.agent_id,
				task=self.task,
				model_name=getattr(self.llm, 'model', 'Unknown'),
				use_vision=self.settings.use_vision,
			)
		)

	async def _wait_while_paused(self) -> bool:
		"""Idle while paused; returns False once the agent is stopped"""
		while self.state.paused and not self.state.stopped:
			await asyncio.sleep(PAUSE_POLL_INTERVAL)
		return not self.state.stopped

	async def run(self, max_steps: int = 100) -> AgentHistoryList:
		"""Execute the task with maximum number of steps"""
		steps_taken = 0
		try:
			self._log_agent_run()

			# Execute initial actions if provided
			if self.initial_actions:
				result = await self.controller.multi_act(
					self.initial_actions,
					self.browser_context,
					check_break_if_paused=self._raise_if_stopped_or_paused,
					check_for_new_elements=False,
					page_extraction_llm=self.settings.page_extraction_llm,
					available_file_paths=self.settings.available_file_paths,
				)
				self.state.last_result = result

			for step in range(max_steps):
				# Check if we should stop due to too many failures
				if self.state.consecutive_failures >= self.settings.max_failures:
					self.logger.error(f'❌ Stopping due to {self.settings.max_failures} consecutive failures')
					break

				if self.state.stopped:
					self.logger.info('Agent stopped')
					break

				if not await self._wait_while_paused():
					self.logger.info('Agent stopped')
					break

				step_info = AgentStepInfo(step_number=step, max_steps=max_steps)
				await self.step(step_info)
				steps_taken += 1

				if self.history.is_done():
					if self.settings.validate_output and step < max_steps - 1:
						if not await self._validate_output():
							continue

					self.logger.info('✅ Task completed successfully')
					break
			else:
				self.logger.info('❌ Failed to complete task in maximum steps')

			return self.history
		finally:
			self.telemetry.capture(
				AgentEndTelemetryEvent(
					agent_id=self.state.agent_id,
					steps=self.state.n_steps,
					max_steps_reached=steps_taken >= max_steps and not self.history.is_done(),
					is_done=self.history.is_done(),
					success=self.history.is_done(),
					errors=self.history.errors(),
				)
			)

			if not self.injected_browser_context:
				await self.browser_context.close()

	async def _validate_output(self) -> bool:
		"""Validate the output of the last action is what the user wanted"""
		system_msg = (
			f'You are a validator of an agent who interacts with a browser. '
			f'Validate if the output of last action is what the user wanted and if the task is completed. '
			f'If the task is unclear defined, you can let it pass. But if something is missing or the image does not show what was requested dont let it pass. '
			f'Try to understand the page and help the model with suggestions like scroll, do x, ... to get the solution right. '
			f'Task to validate: {self.task}. Return a JSON object with 2 keys: is_valid and reason. '
			f'is_valid is a boolean that indicates if the output is correct. '
			f'reason is a string that explains why it is valid or not.'
			f' example: {{"is_valid": false, "reason": "The user wanted to search for "cat photos", but the agent searched for "dog photos" instead."}}'
		)

		state = await self.browser_context.get_state()
		content = AgentMessagePrompt(
			state=state,
			result=self.state.last_result,
			include_attributes=self.settings.include_attributes,
			max_error_length=self.settings.max_error_length,
		)
		msg: list[BaseMessage] = [SystemMessage(content=system_msg), content.get_user_message(self.settings.use_vision)]

		response = await self.llm.ainvoke(msg, output_format=ValidationResult)
		parsed = response.completion
		if not parsed.is_valid:
			self.logger.info(f'❌ Validator decision: {parsed.reason}')
			msg_text = f'The output is not yet correct. {parsed.reason}.'
			self.state.last_result = [ActionResult(extracted_content=msg_text, include_in_memory=True)]
		else:
			self.logger.info(f'✅ Validator decision: {parsed.reason}')
		return parsed.is_valid

	async def _run_planner(self) -> str | None:
		"""Run the planner to analyze state and suggest next steps"""
		if not self.settings.planner_llm:
			return None

		# Create planner message history using full message history
		planner_messages: list[BaseMessage] = [
			PlannerPrompt(self.action_descriptions).get_system_message(),
			*self.message_manager.get_messages()[1:],  # Use full message history except the first
		]

		if not self.settings.use_vision_for_planner and self.settings.use_vision:
			planner_messages = [
				UserMessage(content=message.text) if message.image_count else message for message in planner_messages
			]

		response = await self.settings.planner_llm.ainvoke(planner_messages)
		plan = str(response.completion)

		try:
			plan_json = json.loads(extract_json_from_model_output(plan))
			self.logger.info(f'Planning Analysis:\n{json.dumps(plan_json, indent=4)}')
		except json.JSONDecodeError:
			self.logger.info(f'Plan: {plan}')

		self.state.last_plan = plan
		return plan

	# History -----------------------------------------------------------------

	async def save_history(self, file_path: str | None = None) -> None:
		"""Save the history to a file"""
		target = anyio.Path(file_path or 'AgentHistory.json')
		await target.parent.mkdir(parents=True, exist_ok=True)
		await target.write_text(json.dumps(self.history.model_dump(), indent=2), encoding='utf-8')

	async def load_and_rerun(self, history_file: str | None = None, **kwargs: Any) -> list[ActionResult]:
		"""Load history from file and rerun it"""
		data = json.loads(await anyio.Path(history_file or 'AgentHistory.json').read_text(encoding='utf-8'))
		history = AgentHistoryList.load_from_dict(data, self.AgentOutput)
		return await self.rerun_history(history, **kwargs)

	async def rerun_history(
		self,
		history: AgentHistoryList,
		max_retries: int = 3,
		skip_failures: bool = True,
		delay_between_actions: float = 2.0,
	) -> list[ActionResult]:
		"""Rerun a saved history of actions with error handling and retry logic.

		Args:
			history: The history to replay
			max_retries: Maximum number of retries per action
			skip_failures: Whether to skip failed actions or stop execution
			delay_between_actions: Delay between actions in seconds

		Returns:
			List of action results
		"""
		# Execute initial actions if provided
		if self.initial_actions:
			result = await self.controller.multi_act(
				self.initial_actions,
				self.browser_context,
				check_break_if_paused=self._raise_if_stopped_or_paused,
				check_for_new_elements=False,
				page_extraction_llm=self.settings.page_extraction_llm,
				sensitive_data=self.sensitive_data,
				available_file_paths=self.settings.available_file_paths,
			)
			self.state.last_result = result

		results: list[ActionResult] = []

		for i, history_item in enumerate(history.history):
			goal = history_item.model_output.current_state.next_goal if history_item.model_output else ''
			self.logger.info(f'Replaying step {i + 1}/{len(history.history)}: goal: {goal}')

			if not history_item.model_output or not history_item.model_output.action:
				self.logger.warning(f'Step {i + 1}: No action to replay, skipping')
				results.append(ActionResult(error='No action to replay'))
				continue

			retry_count = 0
			while retry_count < max_retries:
				try:
					result = await self._execute_history_step(history_item, delay_between_actions)
					results.extend(result)
					break
				except AgentInterruptedError:
					raise
				except Exception as e:
					retry_count += 1
					if retry_count == max_retries:
						error_msg = f'Step {i + 1} failed after {max_retries} attempts: {str(e)}'
						self.logger.error(error_msg)
						if not skip_failures:
							raise RuntimeError(error_msg) from e
						results.append(ActionResult(error=error_msg, include_in_memory=True))
					else:
						self.logger.warning(f'Step {i + 1} failed (attempt {retry_count}/{max_retries}), retrying...')
						await asyncio.sleep(delay_between_actions)

		return results

	async def _execute_history_step(self, history_item: AgentHistory, delay: float) -> list[ActionResult]:
		"""Execute a single step from history with element validation"""
		state = await self.browser_context.get_state()
		if history_item.model_output is None:
			raise ValueError('Invalid state or model output')

		updated_actions = []
		for i, action in enumerate(history_item.model_output.action):
			interacted = history_item.state.interacted_element
			historical_element = interacted[i] if i < len(interacted) else None
			updated_action = self._update_action_indices(historical_element, action, state)
			if updated_action is None:
				raise ElementNotFoundError(message=f'Could not find matching element {i} in current page')
			updated_actions.append(updated_action)

		result = await self.controller.multi_act(
			updated_actions,
			self.browser_context,
			check_break_if_paused=self._raise_if_stopped_or_paused,
			check_for_new_elements=False,
			page_extraction_llm=self.settings.page_extraction_llm,
			sensitive_data=self.sensitive_data,
			available_file_paths=self.settings.available_file_paths,
		)

		await asyncio.sleep(delay)
		return result

	def _update_action_indices(
		self,
		historical_element: DOMHistoryElement | None,
		action: ActionModel,
		current_state: BrowserState,
	) -> ActionModel | None:
		"""Return a copy of action re-targeted at the element's index on the current page, or None when it is gone"""
		if not historical_element:
			return action.model_copy(deep=True)

		current_element = HistoryTreeProcessor.find_history_element_in_tree(historical_element, current_state.element_tree)
		if current_element is None or current_element.highlight_index is None:
			return None

		updated_action = action.model_copy(deep=True)
		old_index = action.get_index()
		if old_index != current_element.highlight_index:
			updated_action.set_index(current_element.highlight_index)
			self.logger.info(f'Element moved in DOM, updated index from {old_index} to {current_element.highlight_index}')
		return updated_action
