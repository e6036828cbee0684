from __future__ import annotations

import json
import logging

from pydantic import BaseModel, ConfigDict, Field

from browser_pilot.agent.message_manager.views import MessageHistory, MessageMetadata
from browser_pilot.agent.prompts import AgentMessagePrompt
from browser_pilot.agent.views import DEFAULT_INCLUDE_ATTRIBUTES, ActionResult, AgentOutput, AgentStepInfo
from browser_pilot.browser.views import BrowserState
from browser_pilot.exceptions import ContextOverflowError
from browser_pilot.llm.messages import (
	AssistantMessage,
	BaseMessage,
	ContentPartImageParam,
	ContentPartTextParam,
	SystemMessage,
	UserMessage,
)

logger = logging.getLogger(__name__)

EXAMPLE_OUTPUT = {
	'current_state': {
		'page_summary': 'On the page are company a,b,c wtih their revenue 1,2,3.',
		'evaluation_previous_goal': 'Success - I opend the first page',
		'memory': 'Starting with the new task. I have completed 1/10 steps',
		'next_goal': 'Click on company a',
	},
	'action': [{'click_element': {'index': 0}}],
}


class MessageManagerSettings(BaseModel):
	model_config = ConfigDict(extra='forbid')

	max_input_tokens: int = 128000
	estimated_characters_per_token: int = Field(default=3, ge=1)
	image_tokens: int = 800
	include_attributes: list[str] = Field(default_factory=lambda: list(DEFAULT_INCLUDE_ATTRIBUTES))
	message_context: str | None = None
	sensitive_data: dict[str, str] | None = None
	available_file_paths: list[str] | None = None
	max_error_length: int = 400


class MessageManager:
	"""Owns the conversation sent to the model and keeps it inside the token budget."""

	def __init__(self, task: str, system_message: SystemMessage, settings: MessageManagerSettings | None = None):
		self.task = task
		self.settings = settings or MessageManagerSettings()
		self.system_prompt = system_message
		self.history = MessageHistory()
		self._init_messages()

	def _init_messages(self) -> None:
		"""Initialize the message history with system message, context, task, and other initial messages"""
		self._add_message_with_tokens(self.system_prompt)

		if self.settings.message_context:
			self._add_message_with_tokens(UserMessage(content='Context for the task' + self.settings.message_context))

		self._add_message_with_tokens(
			UserMessage(
				content=f'Your ultimate task is: """{self.task}""". If you achieved your ultimate task, stop everything and use the done action in the next step to complete the task. If not, continue as usual.'
			)
		)

		if self.settings.sensitive_data:
			info = f'Here are placeholders for sensitve data: {list(self.settings.sensitive_data.keys())}'
			info += 'To use them, write <secret>the placeholder name</secret>'
			self._add_message_with_tokens(UserMessage(content=info))

		self._add_message_with_tokens(UserMessage(content='Example output:'))
		self._add_message_with_tokens(AssistantMessage(content=json.dumps(EXAMPLE_OUTPUT)))
		self._add_message_with_tokens(UserMessage(content='[Your task history memory starts here]'))

		if self.settings.available_file_paths:
			self._add_message_with_tokens(
				UserMessage(content=f'Here are file paths you can use: {self.settings.available_file_paths}')
			)

	def add_new_task(self, new_task: str) -> None:
		content = f'Your new ultimate task is: """{new_task}""". Take the previous context into account and finish your new ultimate task. '
		self.task = new_task
		self._add_message_with_tokens(UserMessage(content=content))

	def add_state_message(
		self,
		state: BrowserState,
		result: list[ActionResult] | None = None,
		step_info: AgentStepInfo | None = None,
		use_vision: bool = True,
	) -> None:
		"""Add browser state as human message"""

		# if keep in memory, add to directly to history and add state without result
		if result:
			for r in result:
				if r.include_in_memory:
					if r.extracted_content:
						self._add_message_with_tokens(UserMessage(content='Action result: ' + str(r.extracted_content)))
					if r.error:
						error = r.error[-self.settings.max_error_length :]
						self._add_message_with_tokens(UserMessage(content='Action error: ' + error))
					result = None  # if result in history, we dont want to add it again

		# otherwise add state message and result to next message (which will not stay in memory)
		state_message = AgentMessagePrompt(
			state,
			result,
			include_attributes=self.settings.include_attributes,
			max_error_length=self.settings.max_error_length,
			step_info=step_info,
		).get_user_message(use_vision)
		self._add_message_with_tokens(state_message)

	def add_model_output(self, model_output: AgentOutput) -> None:
		"""Add model output as an assistant message carrying the decision JSON"""
		content = json.dumps(
			{
				'current_state': model_output.current_state.model_dump(),
				'action': [action.model_dump(exclude_none=True) for action in model_output.action],
			}
		)
		self._add_message_with_tokens(AssistantMessage(content=content))

	def add_plan(self, plan: str | None, position: int | None = None) -> None:
		if plan:
			self._add_message_with_tokens(AssistantMessage(content=plan), position)

	def get_messages(self) -> list[BaseMessage]:
		"""Get current message list"""
		msg = [m.message for m in self.history.messages]
		# debug which messages are in history with token count
		total_input_tokens = 0
		logger.debug(f'Messages in history: {len(self.history.messages)}:')
		for m in self.history.messages:
			total_input_tokens += m.metadata.input_tokens
			logger.debug(f'{m.message.role} - Token count: {m.metadata.input_tokens}')
		logger.debug(f'Total input tokens: {total_input_tokens}')
		return msg

	def _add_message_with_tokens(self, message: BaseMessage, position: int | None = None) -> None:
		"""Add message with token count metadata"""

		# filter out sensitive data from the message
		if self.settings.sensitive_data:
			message = self._filter_sensitive_data(message)

		token_count = self._count_tokens(message)
		metadata = MessageMetadata(input_tokens=token_count)
		self.history.add_message(message, metadata, position)

	def _filter_sensitive_data(self, message: BaseMessage) -> BaseMessage:
		"""Filter out sensitive data from the message"""
		sensitive_data = self.settings.sensitive_data or {}

		def replace_sensitive(value: str) -> str:
			for key, val in sensitive_data.items():
				if val:
					value = value.replace(val, f'<secret>{key}</secret>')
			return value

		if isinstance(message.content, str):
			return message.model_copy(update={'content': replace_sensitive(message.content)})
		if isinstance(message.content, list):
			parts = [
				part.model_copy(update={'text': replace_sensitive(part.text)}) if isinstance(part, ContentPartTextParam) else part
				for part in message.content
			]
			return message.model_copy(update={'content': parts})
		return message

	def _count_tokens(self, message: BaseMessage) -> int:
		"""Estimate tokens in a message"""
		tokens = 0
		if isinstance(message.content, list):
			for item in message.content:
				if isinstance(item, ContentPartImageParam):
					tokens += self.settings.image_tokens
				elif isinstance(item, ContentPartTextParam):
					tokens += self._count_text_tokens(item.text)
		elif message.content:
			tokens += self._count_text_tokens(message.content)
		return tokens

	def _count_text_tokens(self, text: str) -> int:
		"""Count tokens in a text string"""
		return len(text) // self.settings.estimated_characters_per_token

	def cut_messages(self) -> None:
		"""Shrink the most recent message until the history fits max_input_tokens"""
		diff = self.history.total_tokens - self.settings.max_input_tokens
		if diff <= 0 or not self.history.messages:
			return

		last = self.history.messages[-1]
		text = last.message.text
		text_tokens = self._count_text_tokens(text)

		# images are stripped first; nothing is committed until the result is known to fit
		total_without_images = self.history.total_tokens
		if last.message.image_count:
			total_without_images = self.history.total_tokens - last.metadata.input_tokens + text_tokens
			logger.debug(
				f'Removing {last.message.image_count} image(s) - total tokens now: {total_without_images}/{self.settings.max_input_tokens}'
			)

		if total_without_images <= self.settings.max_input_tokens:
			self._replace_last_message(text)
			return

		proportion_to_remove = (
			(total_without_images - self.settings.max_input_tokens) / text_tokens if text_tokens else float('inf')
		)
		if proportion_to_remove > 0.99:
			raise ContextOverflowError(
				f'Max token limit reached - history is too long - reduce the system prompt or task. '
				f'proportion_to_remove: {proportion_to_remove}'
			)
		logger.debug(
			f'Removing {proportion_to_remove * 100:.2f}% of the last message ({proportion_to_remove * text_tokens:.0f} / {text_tokens:.0f} tokens)'
		)

		self._replace_last_message(text[: int(len(text) * (1 - proportion_to_remove))])

		last_msg = self.history.messages[-1]
		logger.debug(
			f'Added message with {last_msg.metadata.input_tokens} tokens - total tokens now: '
			f'{self.history.total_tokens}/{self.settings.max_input_tokens} - total messages: {len(self.history.messages)}'
		)

	def _replace_last_message(self, text: str) -> None:
		message = self.history.messages[-1].message
		self.history.remove_message()
		self._add_message_with_tokens(message.model_copy(update={'content': text}))

	def _remove_last_state_message(self) -> None:
		"""Remove last state message from history"""
		if len(self.history.messages) > 2 and isinstance(self.history.messages[-1].message, UserMessage):
			self.history.remove_message()
