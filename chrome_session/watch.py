"""Short-lived watch for a tab opened as a side effect of a click."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from chrome_session.context import CallContext
from chrome_session.views import DriverError, TargetInfo

if TYPE_CHECKING:
	from chrome_session.session import BrowserSession

logger = logging.getLogger(__name__)


class NewTargetWatch:
	"""Reports the first page target that did not exist when the watch was armed.

	Targets are listed through the control handle. The watch gives up after
	``new_tab_wait`` seconds, so a slow tab can be missed and a tab opened by an
	unrelated script can be picked up.
	"""

	def __init__(self, session: BrowserSession):
		self.session = session
		self._baseline: set[str] | None = None

	@property
	def armed(self) -> bool:
		return self._baseline is not None

	async def _targets(self, ctx: CallContext) -> list[TargetInfo]:
		control = self.session.control_handle
		return await self.session.executor.step(ctx, control, lambda: self.session.driver.list_targets(control.connection))

	async def arm(self, ctx: CallContext) -> None:
		try:
			targets = await self._targets(ctx)
		except DriverError as exc:
			logger.debug(f'New-tab watch disabled, listing targets failed: {exc}')
			return
		self._baseline = {info.target_id for info in targets}

	async def wait_for_new(self, ctx: CallContext) -> TargetInfo | None:
		if self._baseline is None:
			return None
		config = self.session.config
		loop = asyncio.get_running_loop()
		deadline = loop.time() + config.new_tab_wait
		while True:
			try:
				targets = await self._targets(ctx)
			except DriverError as exc:
				logger.debug(f'New-tab watch stopped, listing targets failed: {exc}')
				return None
			for info in targets:
				if info.is_page and info.target_id not in self._baseline:
					return info
			left = deadline - loop.time()
			if left <= 0:
				return None
			await ctx.sleep(min(config.new_tab_poll_interval, left))
