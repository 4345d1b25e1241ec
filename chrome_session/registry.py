"""Tab bookkeeping: which targets exist, their order, and which one is active."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from chrome_session.views import ActionValidationError, DriverError

logger = logging.getLogger(__name__)


@dataclass(slots=True, eq=False)
class TargetHandle:
	"""One tab: its target id, the connection bound to it and how to tear that down."""

	target_id: str
	connection: Any
	release_fn: Callable[[], Awaitable[None]]
	is_control: bool = False
	closed: asyncio.Event = field(default_factory=asyncio.Event)

	async def release(self) -> None:
		"""Tear down the connection. Ends the handle's lifetime even if teardown fails."""
		if self.closed.is_set():
			return
		self.closed.set()
		await self.release_fn()


async def discard_handle(handle: TargetHandle) -> None:
	"""Release a handle that left the registry, unless it is the control handle."""
	if handle.is_control:
		logger.debug(f'Keeping control handle {handle.target_id[-4:]} alive after it left the tab order')
		return
	try:
		await handle.release()
	except DriverError as exc:
		logger.warning(f'Failed to release tab {handle.target_id[-4:]}: {exc}')


class TabRegistry:
	"""Mapping of target id to handle, plus tab order and the active id.

	All mutations and dispatch reads happen under one registry-wide lock.
	"""

	def __init__(self) -> None:
		self._lock = threading.RLock()
		self._handles: dict[str, TargetHandle] = {}
		self._order: list[str] = []
		self._active: str | None = None

	def __len__(self) -> int:
		with self._lock:
			return len(self._order)

	@property
	def active_id(self) -> str | None:
		with self._lock:
			return self._active

	def ids(self) -> list[str]:
		with self._lock:
			return list(self._order)

	def known_ids(self) -> set[str]:
		with self._lock:
			return set(self._handles)

	def get(self, target_id: str) -> TargetHandle | None:
		with self._lock:
			return self._handles.get(target_id)

	def active_handle(self) -> TargetHandle:
		with self._lock:
			if self._active is None:
				raise LookupError('no active tab')
			return self._handles[self._active]

	def register(self, handle: TargetHandle) -> None:
		with self._lock:
			if handle.target_id in self._handles:
				raise ValueError(f'target {handle.target_id} is already registered')
			self._handles[handle.target_id] = handle
			self._order.append(handle.target_id)

	def set_active(self, target_id: str) -> None:
		with self._lock:
			if target_id in self._handles:
				self._active = target_id

	def remove(self, target_id: str) -> TargetHandle | None:
		"""Drop a target from the mapping and the order.

		Removing the active target leaves ``active`` unset until the caller
		picks a new one with ``set_active``.
		"""
		with self._lock:
			handle = self._handles.pop(target_id, None)
			if handle is None:
				return None
			self._order.remove(target_id)
			if self._active == target_id:
				self._active = None
			return handle

	def index_of(self, target_id: str) -> int:
		with self._lock:
			try:
				return self._order.index(target_id)
			except ValueError:
				return -1

	def at_index(self, index: int) -> str:
		with self._lock:
			if index < 0 or index >= len(self._order):
				raise ActionValidationError(f'tab index {index} out of range (have {len(self._order)} tabs)')
			return self._order[index]

	def switch_to_index(self, index: int) -> TargetHandle:
		"""Make the tab at ``index`` active and return its handle."""
		with self._lock:
			target_id = self.at_index(index)
			self._active = target_id
			return self._handles[target_id]

	def replace(self, old_id: str, handle: TargetHandle) -> TargetHandle | None:
		"""Swap ``old_id`` for ``handle`` at the same position and make it active.

		Returns the replaced handle so the caller can decide whether to release it.
		"""
		with self._lock:
			if handle.target_id in self._handles:
				raise ValueError(f'target {handle.target_id} is already registered')
			old = self._handles.pop(old_id, None)
			if old_id in self._order:
				self._order[self._order.index(old_id)] = handle.target_id
			else:
				self._order.append(handle.target_id)
			self._handles[handle.target_id] = handle
			self._active = handle.target_id
			return old

	def close_active(self) -> tuple[TargetHandle, TargetHandle]:
		"""Remove the active tab and activate the one before it (wrapping to the first).

		Returns ``(closed, now_active)``. Closing the last tab is rejected.
		"""
		with self._lock:
			if len(self._order) <= 1:
				raise ActionValidationError('cannot close the last tab')
			closing = self._active
			if closing is None:
				raise LookupError('no active tab')
			closing_index = self._order.index(closing)
			closed = self._handles.pop(closing)
			self._order.remove(closing)

			next_index = closing_index - 1
			if next_index < 0 or next_index >= len(self._order):
				next_index = 0
			self._active = self._order[next_index]
			return closed, self._handles[self._active]
