"""Named browser actions dispatched against a BrowserSession.

Every invocation is serialized through the session's executor. Hard failures
raise a ``BrowserActionError``; when an action went through but the page state
could not be read back afterwards, the result text says so instead.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar
from urllib.parse import quote_plus

from pydantic import ValidationError

from chrome_session.context import CallContext
from chrome_session.dom_snapshot import take_snapshot
from chrome_session.recovery import TargetRecovery
from chrome_session.registry import TargetHandle, discard_handle
from chrome_session.session import BrowserSession
from chrome_session.snapshot import Snapshot
from chrome_session.views import (
	ActionRequest,
	ActionValidationError,
	BrowserActionError,
	DriverError,
	ExtractionError,
	RecoveryFailedError,
)
from chrome_session.watch import NewTargetWatch

T = TypeVar('T')

ExtractModel = Callable[[str], Awaitable[str]]

logger = logging.getLogger(__name__)

ACTIONS: tuple[str, ...] = (
	'snapshot',
	'go_to_url',
	'click',
	'type',
	'scroll_down',
	'scroll_up',
	'web_search',
	'wait',
	'extract_content',
	'switch_tab',
	'open_tab',
	'close_tab',
)

EXTRACT_PROMPT = 'Extract the following information from the web page content below.\n\nGoal: {goal}\n\nPage content:\n{content}'

_PAGE_TEXT_SCRIPT = "return document.body && document.body.innerText ? document.body.innerText : '';"
_SCROLL_SCRIPT = 'window.scrollBy(0, arguments[0]);'
_BLANK_URL = 'about:blank'


def truncate(text: str, max_chars: int) -> str:
	if len(text) <= max_chars:
		return text
	return text[:max_chars] + '\n... (truncated)'


class ActionDispatcher:
	"""Maps an action name and its arguments to driver calls and a result text."""

	def __init__(self, session: BrowserSession, extract_model: ExtractModel | None = None):
		self.session = session
		self.extract_model = extract_model
		self.recovery = TargetRecovery(session)
		self._handlers: dict[str, Callable[[CallContext, ActionRequest], Awaitable[str]]] = {
			'snapshot': self._snapshot,
			'go_to_url': self._go_to_url,
			'click': self._click,
			'type': self._type,
			'scroll_down': self._scroll_down,
			'scroll_up': self._scroll_up,
			'web_search': self._web_search,
			'wait': self._wait,
			'extract_content': self._extract_content,
			'switch_tab': self._switch_tab,
			'open_tab': self._open_tab,
			'close_tab': self._close_tab,
		}

	@property
	def driver(self) -> Any:
		return self.session.driver

	@property
	def config(self):
		return self.session.config

	async def invoke(self, action: str, args: Mapping[str, Any] | None = None, ctx: CallContext | None = None) -> str:
		"""Run ``action`` with ``args`` and return the result text.

		The call is bounded by ``config.call_timeout`` on top of whatever
		deadline ``ctx`` carries. An already-cancelled ``ctx`` fails before the
		executor lock is touched.
		"""
		name = action.strip().lower()
		handler = self._handlers.get(name)
		if handler is None:
			raise ActionValidationError(f'unknown action: {name}')
		try:
			request = ActionRequest.model_validate(dict(args or {}))
		except ValidationError as exc:
			raise ActionValidationError(f'invalid input: {exc}') from exc

		call_ctx = (ctx or CallContext()).child(self.config.call_timeout)
		async with self.session.executor.serialized(call_ctx):
			self._validate(name, request)
			await self.session.executor.step(call_ctx, None, self.session.ensure_started)
			logger.debug(f'Dispatching {name} on tab {self.session.registry.active_id}')
			return await handler(call_ctx, request)

	def _validate(self, name: str, request: ActionRequest) -> None:
		"""Argument checks that need no browser round trip."""
		if name == 'go_to_url' and not request.url:
			raise ActionValidationError('url is required for go_to_url action')
		if name == 'web_search' and not request.query:
			raise ActionValidationError('query is required for web_search action')
		if name in ('click', 'type'):
			self.session.snapshots.require_ref(request.ref or 0)

	# --- helpers ---

	async def _step(self, ctx: CallContext, handle: TargetHandle | None, operation: Callable[[], Awaitable[T]]) -> T:
		return await self.session.executor.step(ctx, handle, operation)

	def _active(self) -> TargetHandle:
		return self.session.registry.active_handle()

	async def _capture(self, ctx: CallContext, handle: TargetHandle) -> Snapshot:
		limit = self.config.max_snapshot_elements
		snapshot = await self._step(ctx, handle, lambda: take_snapshot(self.driver, handle.connection, limit))
		self.session.snapshots.record(snapshot)
		return snapshot

	async def _location(self, ctx: CallContext, handle: TargetHandle) -> str:
		try:
			return await self._step(ctx, handle, lambda: self.driver.location(handle.connection))
		except DriverError as exc:
			logger.debug(f'Reading the URL of tab {handle.target_id[-4:]} failed: {exc}')
			return ''

	async def _settle(self, ctx: CallContext, handle: TargetHandle, seconds: float) -> None:
		if seconds <= 0:
			return
		try:
			await self._step(ctx, handle, lambda: self.driver.sleep(handle.connection, seconds))
		except DriverError as exc:
			logger.debug(f'Settle delay on tab {handle.target_id[-4:]} cut short: {exc}')

	async def _wait_ready(self, ctx: CallContext, handle: TargetHandle) -> None:
		await self._step(ctx, handle, lambda: self.driver.wait_ready(handle.connection))

	async def _snapshot_with_url(self, ctx: CallContext, handle: TargetHandle) -> str:
		url = await self._location(ctx, handle)
		snapshot = self.session.snapshots.current
		if snapshot is None:
			return f'URL: {url}\n\n(no snapshot)'
		return f'URL: {url}\n\n{snapshot.text}'

	async def _navigate(self, ctx: CallContext, url: str) -> str:
		session = self.session
		handle = self._active()
		try:
			await self._step(ctx, handle, lambda: self.driver.navigate(handle.connection, url))
		except DriverError as exc:
			session.logger.warning(f'Navigate to {url} failed: {exc}, attempting recovery')
			try:
				handle = await self.recovery.recover(ctx, exc)
			except RecoveryFailedError as rec:
				raise RecoveryFailedError(f'navigation failed: {exc} (recovery: {rec})', original=exc) from rec
			recovered = handle
			try:
				await self._step(ctx, recovered, lambda: self.driver.navigate(recovered.connection, url))
			except DriverError as retry_exc:
				raise DriverError(f'navigation failed after recovery: {retry_exc}') from retry_exc

		try:
			await self._wait_ready(ctx, handle)
		except DriverError as exc:
			session.logger.warning(f'Page not ready after navigating to {url}: {exc}, attempting recovery')
			try:
				handle = await self.recovery.recover(ctx, exc)
			except RecoveryFailedError as rec:
				session.logger.warning(f'Recovery after navigating to {url} failed: {rec}')
			else:
				try:
					await self._wait_ready(ctx, handle)
				except DriverError as retry_exc:
					logger.debug(f'Recovered tab still not ready: {retry_exc}')

		await self._settle(ctx, handle, self.config.navigation_settle)
		try:
			await self._capture(ctx, handle)
		except DriverError as exc:
			return f'Navigated to {url} but snapshot failed: {exc}'
		return await self._snapshot_with_url(ctx, handle)

	# --- actions ---

	async def _snapshot(self, ctx: CallContext, request: ActionRequest) -> str:
		del request
		handle = self._active()
		await self._capture(ctx, handle)
		return await self._snapshot_with_url(ctx, handle)

	async def _go_to_url(self, ctx: CallContext, request: ActionRequest) -> str:
		return await self._navigate(ctx, request.url or '')

	async def _click(self, ctx: CallContext, request: ActionRequest) -> str:
		session = self.session
		ref = request.ref or 0
		href = session.snapshots.href_for(ref)
		if href:
			session.logger.info(f'Ref {ref} links to {href}; navigating instead of clicking')
			return await self._navigate(ctx, href)

		handle = self._active()
		url_before = await self._location(ctx, handle)
		watch = NewTargetWatch(session)
		await watch.arm(ctx)

		try:
			await self._step(ctx, handle, lambda: self.driver.click_by_ref(handle.connection, ref))
		except DriverError as exc:
			raise DriverError(f'click failed: {exc}') from exc

		target = handle
		opened = await watch.wait_for_new(ctx)
		if opened is not None and session.registry.get(opened.target_id) is None:
			try:
				adopted = await self._step(ctx, None, lambda: session.open_handle(opened.target_id))
			except DriverError as exc:
				session.logger.warning(f'Click on ref {ref} opened tab {opened.target_id[-4:]} but attaching failed: {exc}')
			else:
				session.registry.register(adopted)
				session.registry.set_active(adopted.target_id)
				session.logger.info(f'Click on ref {ref} opened tab {adopted.target_id[-4:]}; switched to it')
				target = adopted

		try:
			await self._wait_ready(ctx, target)
		except DriverError as exc:
			session.logger.warning(f'Page not ready after clicking ref {ref}: {exc}, attempting recovery')
			try:
				target = await self.recovery.recover(ctx, exc)
			except RecoveryFailedError as rec:
				return f'Clicked ref {ref} but page navigation caused target loss: {exc} (recovery: {rec})'
			try:
				await self._wait_ready(ctx, target)
			except DriverError as retry_exc:
				logger.debug(f'Recovered tab still not ready: {retry_exc}')

		url_after = await self._location(ctx, target)
		if url_after and url_after != url_before:
			await self._settle(ctx, target, self.config.click_navigation_settle)
		else:
			await self._settle(ctx, target, self.config.click_settle)

		try:
			await self._capture(ctx, target)
		except DriverError as exc:
			return f'Clicked ref {ref} but snapshot failed: {exc}'
		return await self._snapshot_with_url(ctx, target)

	async def _type(self, ctx: CallContext, request: ActionRequest) -> str:
		ref = request.ref or 0
		text = request.text or ''
		handle = self._active()
		try:
			await self._step(ctx, handle, lambda: self.driver.type_by_ref(handle.connection, ref, text))
		except DriverError as exc:
			raise DriverError(f'type failed: {exc}') from exc

		try:
			await self._capture(ctx, handle)
		except DriverError as exc:
			return f'Typed into ref {ref} but snapshot failed: {exc}'
		return await self._snapshot_with_url(ctx, handle)

	async def _scroll(self, ctx: CallContext, amount: int | None, down: bool) -> str:
		pixels = amount if amount and amount > 0 else self.config.default_scroll_amount
		if not down:
			pixels = -pixels
		handle = self._active()
		try:
			await self._step(ctx, handle, lambda: self.driver.evaluate(handle.connection, _SCROLL_SCRIPT, pixels))
		except DriverError as exc:
			raise DriverError(f'scroll failed: {exc}') from exc

		await self._settle(ctx, handle, self.config.scroll_settle)
		try:
			await self._capture(ctx, handle)
		except DriverError as exc:
			return f'Scrolled but snapshot failed: {exc}'
		return await self._snapshot_with_url(ctx, handle)

	async def _scroll_down(self, ctx: CallContext, request: ActionRequest) -> str:
		return await self._scroll(ctx, request.scroll_amount, down=True)

	async def _scroll_up(self, ctx: CallContext, request: ActionRequest) -> str:
		return await self._scroll(ctx, request.scroll_amount, down=False)

	async def _web_search(self, ctx: CallContext, request: ActionRequest) -> str:
		return await self._navigate(ctx, self.config.search_url + quote_plus(request.query or ''))

	async def _wait(self, ctx: CallContext, request: ActionRequest) -> str:
		seconds = request.seconds or 0
		seconds = min(max(seconds, 1), self.config.max_wait_seconds)
		await ctx.sleep(seconds)

		handle = self._active()
		try:
			await self._capture(ctx, handle)
		except DriverError as exc:
			return f'Waited {seconds} seconds but snapshot failed: {exc}'
		return await self._snapshot_with_url(ctx, handle)

	async def _extract_content(self, ctx: CallContext, request: ActionRequest) -> str:
		handle = self._active()
		try:
			text = await self._step(ctx, handle, lambda: self.driver.evaluate(handle.connection, _PAGE_TEXT_SCRIPT))
		except DriverError as exc:
			raise DriverError(f'failed to extract page text: {exc}') from exc
		content = str(text or '')

		if self.extract_model is None or not request.goal:
			return truncate(content, self.config.extract_text_chars)

		model = self.extract_model
		prompt = EXTRACT_PROMPT.format(goal=request.goal, content=truncate(content, self.config.extract_prompt_chars))
		try:
			return await self._step(ctx, None, lambda: model(prompt))
		except BrowserActionError:
			raise
		except Exception as exc:
			raise ExtractionError(f'extraction model failed: {exc}') from exc

	async def _switch_tab(self, ctx: CallContext, request: ActionRequest) -> str:
		index = request.tab_index or 0
		handle = self.session.registry.switch_to_index(index)
		try:
			snapshot = await self._capture(ctx, handle)
		except DriverError as exc:
			return f'Switched to tab {index} but snapshot failed: {exc}'
		url = await self._location(ctx, handle)
		return f'Switched to tab {index}\nURL: {url}\n\n{snapshot.text}'

	async def _open_tab(self, ctx: CallContext, request: ActionRequest) -> str:
		session = self.session
		url = request.url or _BLANK_URL
		previous = session.registry.active_id
		try:
			handle = await self._step(ctx, None, session.open_handle)
		except DriverError as exc:
			raise DriverError(f'failed to open new tab: {exc}') from exc
		session.registry.register(handle)
		session.registry.set_active(handle.target_id)
		session.logger.info(f'Opened tab {handle.target_id[-4:]} for {url}')

		try:
			await self._step(ctx, handle, lambda: self.driver.navigate(handle.connection, url))
			await self._wait_ready(ctx, handle)
		except DriverError as exc:
			await self._abandon_tab(handle, previous)
			raise DriverError(f'failed to open new tab: {exc}') from exc
		except BaseException:
			await self._abandon_tab(handle, previous)
			raise

		try:
			await self._capture(ctx, handle)
		except DriverError as exc:
			return f'Opened new tab with {url} but snapshot failed: {exc}'
		return await self._snapshot_with_url(ctx, handle)

	async def _abandon_tab(self, handle: TargetHandle, previous: str | None) -> None:
		registry = self.session.registry
		registry.remove(handle.target_id)
		if previous is not None and registry.get(previous) is not None:
			registry.set_active(previous)
		elif ids := registry.ids():
			registry.set_active(ids[0])
		await discard_handle(handle)

	async def _close_tab(self, ctx: CallContext, request: ActionRequest) -> str:
		del request
		session = self.session
		closed, now_active = session.registry.close_active()
		session.logger.info(f'Closed tab {closed.target_id[-4:]}; now on {now_active.target_id[-4:]}')
		await discard_handle(closed)

		try:
			snapshot = await self._capture(ctx, now_active)
		except DriverError:
			return 'Closed tab, switched to another tab but snapshot failed'
		url = await self._location(ctx, now_active)
		return f'Closed tab. Now on:\nURL: {url}\n\n{snapshot.text}'
