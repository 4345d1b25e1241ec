"""LLM tool envelope around ActionDispatcher."""

from __future__ import annotations

import json
from typing import Any

from chrome_session.actions import ACTIONS, ActionDispatcher, ExtractModel
from chrome_session.context import CallContext
from chrome_session.session import BrowserSession
from chrome_session.views import ActionValidationError

BROWSER_TOOL_NAME = 'browser_use'

BROWSER_TOOL_DESCRIPTION = """
Interact with a web browser to perform various actions such as navigation, element interaction, content extraction, and tab management.

Every action that changes the page automatically returns a page snapshot: a compact, structured text representation of the current page with numbered ref IDs for interactive elements.

Navigation:
- 'go_to_url': Navigate to a URL. Returns page snapshot.
- 'web_search': Search a query via DuckDuckGo. Returns search results page snapshot.
Snapshot:
- 'snapshot': Get the current page snapshot without performing any action.
Element Interaction (use ref number from the snapshot):
- 'click': Click an element by its ref number. Returns updated snapshot.
- 'type': Clear a field and type text into it by ref number. Returns updated snapshot.
- 'scroll_down'/'scroll_up': Scroll the page (optional pixel amount). Returns updated snapshot.
Content Extraction:
- 'extract_content': Extract and summarize page content based on a goal.
Tab Management:
- 'switch_tab': Switch to a tab by index (0-based).
- 'open_tab': Open a new tab with a URL.
- 'close_tab': Close the current tab.
Utility:
- 'wait': Wait for a specified number of seconds.
"""

_PARAMETER_DESCRIPTIONS: dict[str, tuple[str, str]] = {
	'url': ('string', "URL for 'go_to_url' or 'open_tab' actions"),
	'ref': ('integer', "Element ref number from the snapshot for 'click' and 'type' actions"),
	'text': ('string', "Text to type for 'type' action"),
	'scroll_amount': ('integer', "Pixels to scroll (default 500) for 'scroll_down' or 'scroll_up'"),
	'tab_index': ('integer', "Tab index (0-based) for 'switch_tab' action"),
	'query': ('string', "Search query for 'web_search' action"),
	'goal': ('string', "Extraction goal for 'extract_content' action"),
	'seconds': ('integer', "Seconds to wait for 'wait' action"),
}


def browser_tool_schema() -> dict[str, Any]:
	"""JSON schema of the tool arguments."""
	properties: dict[str, Any] = {
		'action': {'type': 'string', 'enum': list(ACTIONS), 'description': 'The browser action to perform'},
	}
	for name, (kind, description) in _PARAMETER_DESCRIPTIONS.items():
		properties[name] = {'type': kind, 'description': description}
	return {'type': 'object', 'properties': properties, 'required': ['action']}


class BrowserTool:
	"""Browser tool for an agent. Chrome is not launched until the first call."""

	def __init__(self, session: BrowserSession | None = None, extract_model: ExtractModel | None = None):
		self.session = session or BrowserSession.from_env()
		self.dispatcher = ActionDispatcher(self.session, extract_model=extract_model)

	def info(self) -> dict[str, Any]:
		return {'name': BROWSER_TOOL_NAME, 'description': BROWSER_TOOL_DESCRIPTION, 'parameters': browser_tool_schema()}

	async def run_json(self, arguments: str, ctx: CallContext | None = None) -> str:
		"""Decode JSON tool arguments and run the action they name."""
		try:
			payload = json.loads(arguments)
		except json.JSONDecodeError as exc:
			raise ActionValidationError(f'invalid input: {exc}') from exc
		if not isinstance(payload, dict):
			raise ActionValidationError('invalid input: arguments must be a JSON object')
		action = payload.pop('action', '')
		if not isinstance(action, str):
			raise ActionValidationError('invalid input: action must be a string')
		return await self.dispatcher.invoke(action, payload, ctx)

	async def close(self) -> None:
		await self.session.close()
