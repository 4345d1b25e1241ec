"""Configuration for the Chrome driver and the browser session.

Both models are settings: any field can be set from a ``CHROME_SESSION_``
environment variable named after it (``CHROME_SESSION_HEADLESS=false``,
``CHROME_SESSION_CALL_TIMEOUT=30``). Keyword arguments win over the environment.
"""

from __future__ import annotations

import os
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ENV_PREFIX = 'CHROME_SESSION_'

DEFAULT_BROWSER_CANDIDATES: list[str] = [
	'/usr/bin/google-chrome',
	'/usr/bin/google-chrome-stable',
	'/usr/bin/chromium',
	'/usr/bin/chromium-browser',
	'/usr/local/bin/chromium',
	'/opt/google/chrome/chrome',
	'/snap/bin/chromium',
	'/Applications/Google Chrome.app/Contents/MacOS/Google Chrome',
	'/Applications/Chromium.app/Contents/MacOS/Chromium',
	'C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe',
	'C:\\Program Files (x86)\\Google\\Chrome\\Application\\chrome.exe',
]


class ChromeDriverConfig(BaseSettings):
	"""Configuration for the Chrome WebDriver wrapper."""

	model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, env_ignore_empty=True, extra='forbid')

	browser_path: str | None = None
	chromedriver_path: str | None = None
	headless: bool = True
	window_width: int = Field(default=1280, gt=0)
	window_height: int = Field(default=1024, gt=0)
	# CHROME_SESSION_EXTRA_ARGS is a comma-separated list.
	extra_args: Annotated[list[str], NoDecode] = Field(default_factory=list)
	command_timeout: float = Field(default=45.0, gt=0)
	page_load_timeout: float = Field(default=60.0, gt=0)
	script_timeout: float = Field(default=30.0, gt=0)
	ready_timeout: float = Field(default=15.0, gt=0)

	@field_validator('browser_path', 'chromedriver_path', mode='before')
	@classmethod
	def _expand_path(cls, value: Any) -> Any:
		if isinstance(value, str):
			value = value.strip()
			return os.path.expanduser(value) if value else None
		return value

	@field_validator('extra_args', mode='before')
	@classmethod
	def _split_flags(cls, value: Any) -> Any:
		if isinstance(value, str):
			return [flag.strip() for flag in value.split(',') if flag.strip()]
		return value

	@classmethod
	def from_env(cls) -> ChromeDriverConfig:
		return cls()


class BrowserSessionConfig(BaseSettings):
	"""Timing and limits applied by the action layer."""

	model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, env_ignore_empty=True, extra='forbid')

	call_timeout: float = Field(default=60.0, gt=0)
	new_tab_wait: float = Field(default=0.5, gt=0)
	new_tab_poll_interval: float = Field(default=0.1, gt=0)
	navigation_settle: float = Field(default=0.5, ge=0)
	click_settle: float = Field(default=0.2, ge=0)
	click_navigation_settle: float = Field(default=1.0, ge=0)
	scroll_settle: float = Field(default=0.2, ge=0)
	default_scroll_amount: int = Field(default=500, gt=0)
	max_wait_seconds: int = Field(default=30, ge=1)
	search_url: str = 'https://duckduckgo.com/?q='
	extract_prompt_chars: int = Field(default=6000, gt=0)
	extract_text_chars: int = Field(default=4000, gt=0)
	max_snapshot_elements: int = Field(default=400, ge=1)

	@classmethod
	def from_env(cls) -> BrowserSessionConfig:
		return cls()
