"""Shared models and the error taxonomy for browser actions."""

from pydantic import BaseModel, ConfigDict


class BrowserActionError(Exception):
	"""Base class for every failure surfaced by a browser action."""


class ActionValidationError(BrowserActionError, ValueError):
	"""Bad or missing action argument. Raised before any driver call."""


class DriverError(BrowserActionError):
	"""A protocol call against the browser failed."""


class TargetLostError(DriverError):
	"""The target a connection was bound to no longer exists."""


class RecoveryFailedError(BrowserActionError):
	"""No replacement target could be bound after the active target was lost."""

	def __init__(self, message: str, original: Exception | None = None):
		super().__init__(message)
		self.original = original


class OperationTimeoutError(BrowserActionError, TimeoutError):
	"""The caller deadline or an internal sub-wait ran out."""


class OperationCancelledError(BrowserActionError):
	"""The caller cancelled the request."""


class SessionStartupError(BrowserActionError):
	"""The browser process could not be launched. Fatal for the session."""


class ExtractionError(BrowserActionError):
	"""The extraction model failed to answer."""


class TargetInfo(BaseModel):
	"""One live target as reported by the browser."""

	model_config = ConfigDict(extra='forbid')

	target_id: str
	type: str
	url: str = ''

	@property
	def is_page(self) -> bool:
		return self.type == 'page'

	@property
	def is_blank(self) -> bool:
		return self.url in ('', 'about:blank')


class ActionRequest(BaseModel):
	"""Arguments accepted by ``ActionDispatcher.invoke``.

	Every field is optional here; each action checks the ones it needs.
	"""

	model_config = ConfigDict(extra='ignore')

	url: str | None = None
	ref: int | None = None
	text: str | None = None
	scroll_amount: int | None = None
	tab_index: int | None = None
	query: str | None = None
	goal: str | None = None
	seconds: int | None = None
