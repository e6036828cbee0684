from browser_pilot.llm.base import BaseChatModel, ChatInvokeCompletion, ChatInvokeUsage
from browser_pilot.llm.messages import (
	AssistantMessage,
	BaseMessage,
	ContentPartImageParam,
	ContentPartTextParam,
	ImageURL,
	SystemMessage,
	UserMessage,
)
from browser_pilot.llm.openai import ChatOpenAI

__all__ = [
	'AssistantMessage',
	'BaseChatModel',
	'BaseMessage',
	'ChatInvokeCompletion',
	'ChatInvokeUsage',
	'ChatOpenAI',
	'ContentPartImageParam',
	'ContentPartTextParam',
	'ImageURL',
	'SystemMessage',
	'UserMessage',
]
