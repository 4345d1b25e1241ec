"""Caller-supplied cancellation signal and deadline."""

from __future__ import annotations

import asyncio
import time

from chrome_session.views import OperationCancelledError, OperationTimeoutError


class CallContext:
	"""Cancellation signal plus an optional deadline, derivable into tighter scopes.

	A child is done when it is cancelled, when its parent is done, or when the
	earlier of the two deadlines passes.
	"""

	def __init__(self, timeout: float | None = None, parent: CallContext | None = None):
		self._parent = parent
		self._cancelled = asyncio.Event()
		self._timeout = timeout
		deadline = None if timeout is None else time.monotonic() + timeout
		if parent is not None and parent.deadline is not None:
			deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
		self.deadline = deadline

	def child(self, timeout: float | None = None) -> CallContext:
		return CallContext(timeout=timeout, parent=self)

	def cancel(self) -> None:
		self._cancelled.set()

	@property
	def cancelled(self) -> bool:
		if self._cancelled.is_set():
			return True
		return self._parent is not None and self._parent.cancelled

	@property
	def expired(self) -> bool:
		return self.deadline is not None and time.monotonic() >= self.deadline

	@property
	def done(self) -> bool:
		return self.cancelled or self.expired

	def remaining(self, limit: float | None = None) -> float | None:
		"""Seconds left before the deadline, capped at ``limit``. None means unbounded."""
		if self.deadline is None:
			return limit
		left = max(0.0, self.deadline - time.monotonic())
		return left if limit is None else min(left, limit)

	def error(self) -> Exception:
		if self.cancelled:
			return OperationCancelledError('operation cancelled by caller')
		if self._parent is not None and self._parent.expired:
			return self._parent.error()
		total = self._timeout
		if total is None:
			return OperationTimeoutError('operation deadline exceeded')
		return OperationTimeoutError(f'operation timed out after {total:g}s')

	def raise_if_done(self) -> None:
		if self.done:
			raise self.error()

	async def wait_cancelled(self) -> None:
		"""Block until this context or any ancestor is cancelled. Deadlines are not awaited here."""
		if self._parent is None:
			await self._cancelled.wait()
			return
		waiters = [
			asyncio.ensure_future(self._cancelled.wait()),
			asyncio.ensure_future(self._parent.wait_cancelled()),
		]
		try:
			await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
		finally:
			for waiter in waiters:
				waiter.cancel()

	async def sleep(self, seconds: float) -> None:
		"""Sleep unless cancelled or out of time first."""
		self.raise_if_done()
		remaining = self.remaining()
		if remaining is not None and remaining < seconds:
			await self._wait_or_cancel(remaining)
			raise self.error()
		await self._wait_or_cancel(seconds)
		if self.cancelled:
			raise self.error()

	async def _wait_or_cancel(self, seconds: float) -> None:
		cancelled = asyncio.ensure_future(self.wait_cancelled())
		try:
			await asyncio.wait([cancelled], timeout=seconds)
		finally:
			cancelled.cancel()
