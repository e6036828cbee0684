"""OpenAI chat-completions transport."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, TypeVar, overload

from openai import APIConnectionError, APIStatusError, AsyncOpenAI, BadRequestError, RateLimitError
from pydantic import BaseModel, ValidationError

from browser_pilot.config import CONFIG
from browser_pilot.exceptions import ModelProviderError, OutputParseError, RateLimitedError, TokenLimitExceededError
from browser_pilot.llm.base import ChatInvokeCompletion, ChatInvokeUsage
from browser_pilot.llm.messages import BaseMessage, UserMessage, merge_successive_messages
from browser_pilot.utils import extract_json_from_model_output

logger = logging.getLogger(__name__)

T = TypeVar('T', bound=BaseModel)

_CONTEXT_LENGTH_MARKERS = ('context_length_exceeded', 'maximum context length', 'too many tokens')


def serialize_messages(messages: list[BaseMessage]) -> list[dict[str, Any]]:
	serialized: list[dict[str, Any]] = []
	for message in messages:
		if isinstance(message.content, list):
			content: Any = [part.model_dump() for part in message.content]
		else:
			content = message.content or ''
		serialized.append({'role': message.role, 'content': content})
	return serialized


@dataclass
class ChatOpenAI:
	"""OpenAI (or OpenAI-compatible) chat model.

	With ``use_structured_output`` the request carries a JSON schema response format;
	without it the schema is appended to the prompt and the reply is parsed leniently.
	"""

	model: str = field(default_factory=lambda: CONFIG.BROWSER_PILOT_DEFAULT_MODEL)
	temperature: float | None = 0.2
	api_key: str | None = None
	base_url: str | None = None
	timeout: float | None = 60.0
	max_retries: int = 2
	use_structured_output: bool = True

	_client: AsyncOpenAI | None = field(default=None, init=False, repr=False)

	@property
	def provider(self) -> str:
		return 'openai'

	def get_client(self) -> AsyncOpenAI:
		if self._client is None:
			self._client = AsyncOpenAI(
				api_key=self.api_key or CONFIG.OPENAI_API_KEY,
				base_url=self.base_url or CONFIG.OPENAI_BASE_URL,
				timeout=self.timeout,
				max_retries=self.max_retries,
			)
		return self._client

	def _get_usage(self, response: Any) -> ChatInvokeUsage | None:
		usage = getattr(response, 'usage', None)
		if usage is None:
			return None
		return ChatInvokeUsage(
			prompt_tokens=usage.prompt_tokens,
			completion_tokens=usage.completion_tokens,
			total_tokens=usage.total_tokens,
		)

	@overload
	async def ainvoke(self, messages: list[BaseMessage], output_format: None = None) -> ChatInvokeCompletion[str]: ...

	@overload
	async def ainvoke(self, messages: list[BaseMessage], output_format: type[T]) -> ChatInvokeCompletion[T]: ...

	async def ainvoke(
		self, messages: list[BaseMessage], output_format: type[T] | None = None
	) -> ChatInvokeCompletion[T] | ChatInvokeCompletion[str]:
		request: dict[str, Any] = {'model': self.model}
		if self.temperature is not None:
			request['temperature'] = self.temperature

		if output_format is not None and self.use_structured_output:
			request['response_format'] = {
				'type': 'json_schema',
				'json_schema': {
					'name': output_format.__name__,
					'schema': output_format.model_json_schema(),
					'strict': False,
				},
			}
		elif output_format is not None:
			schema = json.dumps(output_format.model_json_schema())
			messages = merge_successive_messages(
				[*messages, UserMessage(content=f'Respond only with a JSON object matching this schema:\n{schema}')],
				'user',
			)
		request['messages'] = serialize_messages(messages)

		try:
			response = await self.get_client().chat.completions.create(**request)
		except RateLimitError as e:
			raise RateLimitedError(f'Rate limit reached for {self.model}: {e}') from e
		except BadRequestError as e:
			if any(marker in str(e).lower() for marker in _CONTEXT_LENGTH_MARKERS):
				raise TokenLimitExceededError(str(e)) from e
			raise ModelProviderError(str(e), status_code=e.status_code, model=self.model) from e
		except APIConnectionError as e:
			raise ModelProviderError(f'Connection to {self.model} failed: {e}', model=self.model) from e
		except APIStatusError as e:
			raise ModelProviderError(str(e), status_code=e.status_code, model=self.model) from e

		content = response.choices[0].message.content if response.choices else None
		usage = self._get_usage(response)
		if output_format is None:
			return ChatInvokeCompletion(completion=content or '', usage=usage)

		if not content:
			raise OutputParseError('Could not parse response: the model returned no content')
		try:
			parsed = output_format.model_validate_json(extract_json_from_model_output(content))
		except ValidationError as e:
			logger.debug(f'Failed to parse model output: {content}')
			raise OutputParseError(f'Could not parse response: {e}') from e
		return ChatInvokeCompletion(completion=parsed, usage=usage)
