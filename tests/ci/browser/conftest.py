"""Shared fakes for chrome_session tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import pytest

from chrome_session.actions import ActionDispatcher
from chrome_session.config import BrowserSessionConfig
from chrome_session.dom_snapshot import SNAPSHOT_SCRIPT
from chrome_session.driver import TargetConnection
from chrome_session.session import BrowserSession
from chrome_session.views import DriverError, TargetInfo, TargetLostError


class FakeDriver:
	"""In-memory browser that records calls and rejects overlapping ones."""

	def __init__(self) -> None:
		self.allocator = object()
		self.calls: list[tuple[Any, ...]] = []
		self.targets: dict[str, dict[str, str]] = {}
		self.pages: dict[str, dict[str, Any]] = {}
		self.failures: dict[str, list[Exception]] = {}
		self.released: list[str] = []
		self.scrolls: list[int] = []
		self.typed: list[tuple[str, int, str]] = []
		self.cross_origin: dict[str, str] = {}
		self.on_click: Callable[[str, int], None] | None = None
		self.launch_error: Exception | None = None
		self.launches = 0
		self.closed = False
		self.delay = 0.0
		self.in_flight = 0
		self.reentered = False
		self._initial: str | None = None
		self._counter = 0

	def new_target_id(self) -> str:
		self._counter += 1
		return f'TARGET-{self._counter:04d}'

	def fail_next(self, name: str, error: Exception) -> None:
		self.failures.setdefault(name, []).append(error)

	def add_page(self, url: str, title: str = '', elements: list[dict[str, Any]] | None = None, text: str = '') -> None:
		self.pages[url] = {'title': title, 'elements': elements or [], 'text': text}

	def call_names(self) -> list[str]:
		return [call[0] for call in self.calls]

	@asynccontextmanager
	async def _call(self, name: str, *args: Any) -> AsyncIterator[None]:
		if self.in_flight:
			self.reentered = True
			raise AssertionError(f're-entrant driver call: {name}')
		self.in_flight += 1
		try:
			self.calls.append((name, *args))
			if self.delay:
				await asyncio.sleep(self.delay)
			queue = self.failures.get(name)
			if queue:
				raise queue.pop(0)
			yield
		finally:
			self.in_flight -= 1

	def _target(self, connection: TargetConnection) -> dict[str, str]:
		target = self.targets.get(connection.target_id)
		if target is None:
			raise TargetLostError(f'target {connection.target_id} is gone')
		return target

	async def launch(self) -> Any:
		async with self._call('launch'):
			self.launches += 1
			if self.launch_error is not None:
				raise self.launch_error
			self._initial = self.new_target_id()
			self.targets[self._initial] = {'type': 'page', 'url': 'about:blank'}
			return self.allocator

	async def new_connection(self, allocator: Any, target_id: str | None = None) -> TargetConnection:
		async with self._call('new_connection', target_id):
			assert allocator is self.allocator
			if target_id is not None:
				if target_id not in self.targets:
					raise TargetLostError(f'target {target_id} not found')
				return TargetConnection(target_id=target_id)
			if self._initial is not None:
				claimed, self._initial = self._initial, None
				return TargetConnection(target_id=claimed)
			new_id = self.new_target_id()
			self.targets[new_id] = {'type': 'page', 'url': 'about:blank'}
			return TargetConnection(target_id=new_id)

	async def release(self, connection: TargetConnection) -> None:
		async with self._call('release', connection.target_id):
			self.released.append(connection.target_id)
			self.targets.pop(connection.target_id, None)

	async def navigate(self, connection: TargetConnection, url: str) -> None:
		async with self._call('navigate', connection.target_id, url):
			target = self._target(connection)
			if url in self.cross_origin:
				# The browser continues the page in a fresh target.
				del self.targets[connection.target_id]
				self.targets[self.cross_origin[url]] = {'type': 'page', 'url': url}
				return
			target['url'] = url

	async def wait_ready(self, connection: TargetConnection) -> None:
		async with self._call('wait_ready', connection.target_id):
			self._target(connection)

	async def evaluate(self, connection: TargetConnection, script: str, *args: Any) -> Any:
		async with self._call('evaluate', connection.target_id):
			url = self._target(connection)['url']
			page = self.pages.get(url, {'title': '', 'elements': [], 'text': ''})
			if script == SNAPSHOT_SCRIPT:
				return {'url': url, 'title': page['title'], 'elements': page['elements'], 'text': page['text']}
			if 'scrollBy' in script:
				self.scrolls.append(args[0])
				return None
			if 'innerText' in script:
				return page['text']
			raise DriverError(f'unexpected script: {script[:40]}')

	async def location(self, connection: TargetConnection) -> str:
		async with self._call('location', connection.target_id):
			return self._target(connection)['url']

	async def click_by_ref(self, connection: TargetConnection, ref: int) -> None:
		async with self._call('click_by_ref', connection.target_id, ref):
			self._target(connection)
			if self.on_click is not None:
				self.on_click(connection.target_id, ref)

	async def type_by_ref(self, connection: TargetConnection, ref: int, text: str) -> None:
		async with self._call('type_by_ref', connection.target_id, ref, text):
			self._target(connection)
			self.typed.append((connection.target_id, ref, text))

	async def list_targets(self, connection: TargetConnection) -> list[TargetInfo]:
		async with self._call('list_targets', connection.target_id):
			return [
				TargetInfo(target_id=target_id, type=target['type'], url=target['url']) for target_id, target in self.targets.items()
			]

	async def sleep(self, connection: TargetConnection, seconds: float) -> None:
		async with self._call('sleep', connection.target_id, seconds):
			pass

	async def close(self) -> None:
		async with self._call('close'):
			self.closed = True


FAST_CONFIG = BrowserSessionConfig(
	call_timeout=5.0,
	new_tab_wait=0.05,
	new_tab_poll_interval=0.01,
	navigation_settle=0.0,
	click_settle=0.0,
	click_navigation_settle=0.0,
	scroll_settle=0.0,
)


@pytest.fixture
def fake_driver() -> FakeDriver:
	return FakeDriver()


@pytest.fixture
def session(fake_driver: FakeDriver) -> BrowserSession:
	return BrowserSession(driver=fake_driver, config=FAST_CONFIG)


@pytest.fixture
def dispatcher(session: BrowserSession) -> ActionDispatcher:
	return ActionDispatcher(session)
