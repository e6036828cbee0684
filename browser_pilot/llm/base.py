from typing import Generic, Protocol, TypeVar, overload, runtime_checkable

from pydantic import BaseModel

from browser_pilot.llm.messages import BaseMessage

T = TypeVar('T', bound=BaseModel)
CompletionT = TypeVar('CompletionT')


class ChatInvokeUsage(BaseModel):
	prompt_tokens: int
	completion_tokens: int
	total_tokens: int


class ChatInvokeCompletion(BaseModel, Generic[CompletionT]):
	"""A model response: free text, or an instance of the requested output model."""

	completion: CompletionT
	usage: ChatInvokeUsage | None = None


@runtime_checkable
class BaseChatModel(Protocol):
	"""Model transport capability: send messages, get back text or a schema-constrained object."""

	model: str

	@property
	def provider(self) -> str: ...

	@overload
	async def ainvoke(self, messages: list[BaseMessage], output_format: None = None) -> ChatInvokeCompletion[str]: ...

	@overload
	async def ainvoke(self, messages: list[BaseMessage], output_format: type[T]) -> ChatInvokeCompletion[T]: ...

	async def ainvoke(
		self, messages: list[BaseMessage], output_format: type[T] | None = None
	) -> ChatInvokeCompletion[T] | ChatInvokeCompletion[str]: ...
