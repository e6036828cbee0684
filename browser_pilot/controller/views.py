from pydantic import BaseModel, ConfigDict, Field


# Action Input Models
class SearchGoogleAction(BaseModel):
	query: str


class GoToUrlAction(BaseModel):
	url: str


class ClickElementAction(BaseModel):
	index: int
	xpath: str | None = None


class InputTextAction(BaseModel):
	index: int
	text: str
	xpath: str | None = None


class DoneAction(BaseModel):
	text: str


class SwitchTabAction(BaseModel):
	page_id: int


class OpenTabAction(BaseModel):
	url: str


class CloseTabAction(BaseModel):
	page_id: int


class ExtractContentAction(BaseModel):
	goal: str


class ScrollAction(BaseModel):
	amount: int | None = Field(default=None, description='Pixels to scroll; omit to scroll one page')


class SendKeysAction(BaseModel):
	keys: str


class ScrollToTextAction(BaseModel):
	text: str


class GetDropdownOptionsAction(BaseModel):
	index: int


class SelectDropdownOptionAction(BaseModel):
	index: int
	text: str


class NoParamsAction(BaseModel):
	"""Accepts absolutely anything in the incoming data and discards it,
	so the final parsed model is empty.
	"""

	model_config = ConfigDict(extra='ignore')
