"""Rebinding the active tab after the browser silently replaced its target.

Chrome's site isolation can destroy a tab's target on a cross-origin
navigation and continue the page in a new target with a new id. The handle
the registry holds for that tab then fails every call. Recovery lists live
targets through the control handle, picks the likely replacement and swaps it
into the registry in place of the dead one.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from typing import TYPE_CHECKING

from chrome_session.context import CallContext
from chrome_session.registry import TargetHandle, discard_handle
from chrome_session.views import DriverError, RecoveryFailedError, TargetInfo

if TYPE_CHECKING:
	from chrome_session.session import BrowserSession


class RecoveryState(str, Enum):
	STABLE = 'stable'
	SUSPECT = 'suspect'
	RECOVERING = 'recovering'
	RECOVERED = 'recovered'
	FAILED = 'failed'


def select_replacement_target(targets: Iterable[TargetInfo], known_ids: set[str], dead_id: str | None) -> TargetInfo | None:
	"""Pick the target most likely to have replaced ``dead_id``.

	Only page targets with a real URL qualify. A target the registry has never
	seen wins; otherwise any known target other than the dead one. This is a
	heuristic: the browser does not say which target replaced which.
	"""
	candidates = [info for info in targets if info.is_page and not info.is_blank]
	for info in candidates:
		if info.target_id not in known_ids:
			return info
	for info in candidates:
		if info.target_id != dead_id:
			return info
	return None


class TargetRecovery:
	"""Runs recovery attempts for one session. Callers hold the executor lock."""

	def __init__(self, session: BrowserSession):
		self.session = session
		self.state = RecoveryState.STABLE

	async def recover(self, ctx: CallContext, cause: Exception) -> TargetHandle:
		"""Replace the active handle after ``cause``; returns the new active handle.

		Raises RecoveryFailedError when no replacement can be listed or bound.
		"""
		session = self.session
		registry = session.registry
		dead_id = registry.active_id
		self.state = RecoveryState.SUSPECT
		session.logger.warning(f'Active tab {dead_id[-4:] if dead_id else "--"} looks lost ({cause}); recovering')

		self.state = RecoveryState.RECOVERING
		control = session.control_handle
		try:
			targets = await session.executor.step(ctx, control, lambda: session.driver.list_targets(control.connection))
		except DriverError as exc:
			self._fail(f'failed to list targets: {exc}')
			raise RecoveryFailedError(f'failed to list targets: {exc}', original=cause) from exc

		choice = select_replacement_target(targets, registry.known_ids(), dead_id)
		if choice is None:
			message = f'no suitable page target found for recovery (saw {len(targets)} targets)'
			self._fail(message)
			raise RecoveryFailedError(message, original=cause)

		existing = registry.get(choice.target_id)
		if existing is not None:
			dead = registry.remove(dead_id) if dead_id else None
			registry.set_active(existing.target_id)
			replacement = existing
			session.logger.info(f'Recovery fell back to known tab {choice.target_id[-4:]} ({choice.url})')
		else:
			try:
				replacement = await session.executor.step(ctx, None, lambda: session.open_handle(choice.target_id))
			except DriverError as exc:
				self._fail(f'failed to attach to target {choice.target_id}: {exc}')
				raise RecoveryFailedError(f'failed to attach to target {choice.target_id}: {exc}', original=cause) from exc
			if dead_id is None:
				registry.register(replacement)
				registry.set_active(replacement.target_id)
				dead = None
			else:
				dead = registry.replace(dead_id, replacement)
			session.logger.info(f'Recovered tab: {dead_id[-4:] if dead_id else "--"} -> {choice.target_id[-4:]} ({choice.url})')

		if dead is not None:
			await discard_handle(dead)
		self.state = RecoveryState.RECOVERED
		return replacement

	def _fail(self, reason: str) -> None:
		self.state = RecoveryState.FAILED
		self.session.logger.warning(f'Target recovery failed: {reason}')
