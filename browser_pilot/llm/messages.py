"""Provider-neutral chat message types."""

from typing import Literal

from pydantic import BaseModel, ConfigDict


class ContentPartTextParam(BaseModel):
	type: Literal['text'] = 'text'
	text: str


class ImageURL(BaseModel):
	url: str
	detail: Literal['auto', 'low', 'high'] = 'auto'


class ContentPartImageParam(BaseModel):
	type: Literal['image_url'] = 'image_url'
	image_url: ImageURL


ContentPart = ContentPartTextParam | ContentPartImageParam


class _MessageBase(BaseModel):
	model_config = ConfigDict(extra='forbid', validate_assignment=True)

	@property
	def text(self) -> str:
		content = getattr(self, 'content', None)
		if content is None:
			return ''
		if isinstance(content, str):
			return content
		return '\n'.join(part.text for part in content if isinstance(part, ContentPartTextParam))

	@property
	def image_count(self) -> int:
		content = getattr(self, 'content', None)
		if not isinstance(content, list):
			return 0
		return sum(1 for part in content if isinstance(part, ContentPartImageParam))


class SystemMessage(_MessageBase):
	role: Literal['system'] = 'system'
	content: str


class UserMessage(_MessageBase):
	role: Literal['user'] = 'user'
	content: str | list[ContentPart]


class AssistantMessage(_MessageBase):
	role: Literal['assistant'] = 'assistant'
	content: str | None = None


BaseMessage = SystemMessage | UserMessage | AssistantMessage


def merge_successive_messages(messages: list[BaseMessage], role: Literal['user', 'assistant']) -> list[BaseMessage]:
	"""Merge runs of same-role text messages for providers that reject consecutive turns."""
	merged: list[BaseMessage] = []
	for message in messages:
		previous = merged[-1] if merged else None
		if (
			previous is not None
			and message.role == role
			and previous.role == role
			and isinstance(previous.content, str)
			and isinstance(message.content, str)
		):
			merged[-1] = previous.model_copy(update={'content': f'{previous.content}\n\n{message.content}'})
		else:
			merged.append(message)
	return merged
