"""Browser session: the lazily launched process, its control handle and the tab registry."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from uuid_extensions import uuid7str

from chrome_session.config import BrowserSessionConfig, ChromeDriverConfig
from chrome_session.driver import BrowserDriver, ChromeDriver, TargetConnection
from chrome_session.executor import OperationExecutor
from chrome_session.registry import TabRegistry, TargetHandle
from chrome_session.snapshot import SnapshotCache
from chrome_session.views import SessionStartupError

_BLANK_URL = 'about:blank'


class BrowserSession(BaseModel):
	"""One browser process shared by every tab.

	The process is launched on first use and kept until ``close()`` at exit.
	The connection bound to the first tab is the control handle: recovery lists
	targets through it, and it is never released while the session lives.
	"""

	model_config = ConfigDict(
		arbitrary_types_allowed=True, extra='forbid', validate_assignment=True, revalidate_instances='never'
	)

	id: str = Field(default_factory=uuid7str)
	config: BrowserSessionConfig = Field(default_factory=BrowserSessionConfig)
	driver: BrowserDriver = Field(default_factory=ChromeDriver)
	registry: TabRegistry = Field(default_factory=TabRegistry)
	snapshots: SnapshotCache = Field(default_factory=SnapshotCache)
	executor: OperationExecutor = Field(default_factory=OperationExecutor)

	_allocator: Any | None = PrivateAttr(default=None)
	_control: TargetHandle | None = PrivateAttr(default=None)
	_start_task: asyncio.Task[None] | None = PrivateAttr(default=None)
	_closed: bool = PrivateAttr(default=False)

	@classmethod
	def from_config(
		cls, driver_config: ChromeDriverConfig, session_config: BrowserSessionConfig | None = None
	) -> BrowserSession:
		return cls(driver=ChromeDriver(config=driver_config), config=session_config or BrowserSessionConfig())

	@classmethod
	def from_env(cls) -> BrowserSession:
		return cls.from_config(ChromeDriverConfig.from_env(), BrowserSessionConfig.from_env())

	@property
	def logger(self) -> logging.Logger:
		active = self.registry.active_id
		target = active[-2:] if active else '--'
		return logging.getLogger(f'chrome_session.BrowserSession🅑 {self.id[-4:]} 🅣 {target}')

	@property
	def started(self) -> bool:
		return self._control is not None

	@property
	def allocator(self) -> Any:
		if self._allocator is None:
			raise RuntimeError('browser session is not started')
		return self._allocator

	@property
	def control_handle(self) -> TargetHandle:
		if self._control is None:
			raise RuntimeError('browser session is not started')
		return self._control

	async def ensure_started(self) -> None:
		"""Launch the browser once. Every caller observes the outcome of that single attempt."""
		if self._closed:
			raise SessionStartupError('browser session is closed')
		if self._start_task is None:
			self._start_task = asyncio.ensure_future(self._start())
		# A cancelled caller must not abort the launch other callers are waiting on.
		await asyncio.shield(self._start_task)

	async def _start(self) -> None:
		connection: TargetConnection | None = None
		try:
			allocator = await self.driver.launch()
			connection = await self.driver.new_connection(allocator)
			await self.driver.navigate(connection, _BLANK_URL)
		except Exception as exc:
			self.logger.error(f'Browser startup failed: {type(exc).__name__}: {exc}')
			await self._abort_start(connection)
			raise SessionStartupError(f'failed to initialize browser: {exc}') from exc

		self._allocator = allocator
		control = TargetHandle(
			target_id=connection.target_id,
			connection=connection,
			release_fn=partial(self.driver.release, connection),
			is_control=True,
		)
		self.registry.register(control)
		self.registry.set_active(control.target_id)
		self._control = control
		self.logger.info(f'Browser started; control tab {control.target_id[-4:]}')

	async def _abort_start(self, connection: TargetConnection | None) -> None:
		try:
			if connection is not None:
				await self.driver.release(connection)
			await self.driver.close()
		except Exception as exc:
			self.logger.debug(f'Cleanup after failed startup raised: {type(exc).__name__}: {exc}')

	async def open_handle(self, target_id: str | None = None) -> TargetHandle:
		"""Connect to ``target_id``, or to a freshly opened tab. The handle is not registered."""
		connection = await self.driver.new_connection(self.allocator, target_id)
		return TargetHandle(
			target_id=connection.target_id,
			connection=connection,
			release_fn=partial(self.driver.release, connection),
		)

	async def close(self) -> None:
		"""Tear down the browser process. Only called at exit."""
		if self._closed:
			return
		self._closed = True
		if self._start_task is not None and not self._start_task.done():
			self._start_task.cancel()
		if self._control is None:
			return
		await self.driver.close()
		self.logger.debug('Browser process closed')
