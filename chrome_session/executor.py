"""Single-flight execution of browser operations.

The driver is stateful and not safe for concurrent use, so every action,
including pure reads and target recovery, runs under one session-wide lock.
Each driver step inside an action is additionally scoped to the caller's
context and to the lifetime of the tab it targets.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from chrome_session.context import CallContext
from chrome_session.registry import TargetHandle
from chrome_session.views import OperationTimeoutError, TargetLostError

T = TypeVar('T')

logger = logging.getLogger(__name__)


class OperationExecutor:
	"""Serializes operations and races each step against cancellation."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()

	@property
	def busy(self) -> bool:
		return self._lock.locked()

	@asynccontextmanager
	async def serialized(self, ctx: CallContext) -> AsyncIterator[None]:
		"""Hold the session-wide lock for the body. Fails fast if ``ctx`` is already done."""
		ctx.raise_if_done()
		await self._acquire(ctx)
		try:
			yield
		finally:
			self._lock.release()

	async def _acquire(self, ctx: CallContext) -> None:
		acquire = asyncio.ensure_future(self._lock.acquire())
		cancelled = asyncio.ensure_future(ctx.wait_cancelled())
		try:
			await asyncio.wait({acquire, cancelled}, timeout=ctx.remaining(), return_when=asyncio.FIRST_COMPLETED)
		except BaseException:
			self._abandon(acquire)
			raise
		finally:
			cancelled.cancel()

		if acquire.done() and not acquire.cancelled():
			if not ctx.done:
				return
			self._lock.release()
			raise ctx.error()
		acquire.cancel()
		raise ctx.error()

	def _abandon(self, acquire: asyncio.Future[bool]) -> None:
		if acquire.done() and not acquire.cancelled() and acquire.exception() is None:
			self._lock.release()
		else:
			acquire.cancel()

	async def step(
		self,
		ctx: CallContext,
		handle: TargetHandle | None,
		operation: Callable[[], Awaitable[T]],
		timeout: float | None = None,
	) -> T:
		"""Run one driver call; abort when the caller is done or the tab's lifetime ends."""
		ctx.raise_if_done()
		if handle is not None and handle.closed.is_set():
			raise TargetLostError(f'tab {handle.target_id} is already closed')

		task = asyncio.ensure_future(operation())
		watchers = [asyncio.ensure_future(ctx.wait_cancelled())]
		if handle is not None:
			watchers.append(asyncio.ensure_future(handle.closed.wait()))
		try:
			done, _ = await asyncio.wait({task, *watchers}, timeout=ctx.remaining(timeout), return_when=asyncio.FIRST_COMPLETED)
		except BaseException:
			task.cancel()
			raise
		finally:
			for watcher in watchers:
				watcher.cancel()

		if task in done:
			return task.result()
		task.cancel()
		if handle is not None and handle.closed.is_set():
			raise TargetLostError(f'tab {handle.target_id} closed during the operation')
		if ctx.done or timeout is None:
			raise ctx.error()
		raise OperationTimeoutError(f'browser step timed out after {timeout:g}s')

	async def run(self, ctx: CallContext, handle: TargetHandle | None, operation: Callable[[], Awaitable[T]]) -> T:
		"""Serialize and run a single operation against ``handle``."""
		async with self.serialized(ctx):
			return await self.step(ctx, handle, operation)
