"""Page snapshots via injected JavaScript.

The script numbers every visible interactive element, stamps the number on the
element as ``REF_ATTRIBUTE`` so ``click_by_ref``/``type_by_ref`` can find it
again, and returns a compact description that is rendered to text here.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chrome_session.driver import REF_ATTRIBUTE, BrowserDriver
from chrome_session.snapshot import Snapshot
from chrome_session.views import DriverError

_LINK_SCHEMES = ('http://', 'https://', 'file://')
_MAX_NAME_CHARS = 80


class SnapshotElement(BaseModel):
	"""Interactive element numbered by the snapshot script."""

	model_config = ConfigDict(extra='forbid')

	ref: int = Field(ge=1)
	role: str
	name: str = ''
	value: str | None = None
	href: str | None = None


class SnapshotPayload(BaseModel):
	"""Raw payload returned by ``SNAPSHOT_SCRIPT``."""

	model_config = ConfigDict(extra='forbid')

	url: str
	title: str
	elements: list[SnapshotElement]
	text: str = ''


SNAPSHOT_SCRIPT = (
	r"""
return (() => {
	const MAX = Math.max(1, Math.min(Number(arguments[0] ?? 400), 2000));
	const TEXT_MAX = Math.max(0, Number(arguments[1] ?? 2000));
	const REF_ATTR = '"""
	+ REF_ATTRIBUTE
	+ r"""';

	const selectors = [
		'a[href]',
		'button',
		'input:not([type="hidden"])',
		'select',
		'textarea',
		'summary',
		'[role="button"]',
		'[role="link"]',
		'[role="checkbox"]',
		'[role="radio"]',
		'[role="menuitem"]',
		'[role="tab"]',
		'[role="option"]',
		'[role="textbox"]',
		'[role="combobox"]',
		'[contenteditable=""]',
		'[contenteditable="true"]',
		'[tabindex]:not([tabindex="-1"])'
	];

	for (const stale of document.querySelectorAll(`[${REF_ATTR}]`)) {
		stale.removeAttribute(REF_ATTR);
	}

	const isVisible = (el) => {
		const rect = el.getBoundingClientRect();
		if (rect.width <= 0 || rect.height <= 0) return false;
		const style = window.getComputedStyle(el);
		if (!style) return true;
		if (style.display === 'none' || style.visibility === 'hidden') return false;
		if (style.opacity === '0') return false;
		if (el.hasAttribute('hidden') || el.getAttribute('aria-hidden') === 'true') return false;
		return true;
	};

	const roleOf = (el) => {
		const explicit = el.getAttribute('role');
		if (explicit) return explicit;
		const tag = el.tagName.toLowerCase();
		if (tag === 'a') return 'link';
		if (tag === 'select') return 'combobox';
		if (tag === 'textarea') return 'textbox';
		if (tag === 'input') {
			const type = (el.getAttribute('type') || 'text').toLowerCase();
			if (type === 'checkbox' || type === 'radio') return type;
			if (type === 'submit' || type === 'button' || type === 'reset' || type === 'image') return 'button';
			return 'textbox';
		}
		if (el.isContentEditable) return 'textbox';
		return tag;
	};

	const nameOf = (el) => {
		const label = el.getAttribute('aria-label') || el.getAttribute('alt') || el.getAttribute('title');
		if (label) return label;
		if (el.labels && el.labels.length) return el.labels[0].innerText || '';
		const text = (el.innerText || el.textContent || '').trim();
		if (text) return text;
		return el.getAttribute('placeholder') || el.getAttribute('name') || '';
	};

	const elements = [];
	const seen = new Set();
	for (const el of document.querySelectorAll(selectors.join(','))) {
		if (seen.has(el) || !isVisible(el)) continue;
		seen.add(el);
		const ref = elements.length + 1;
		el.setAttribute(REF_ATTR, String(ref));
		const tag = el.tagName.toLowerCase();
		const isPassword = tag === 'input' && (el.getAttribute('type') || '').toLowerCase() === 'password';
		const hasValue = !isPassword && (tag === 'input' || tag === 'textarea' || tag === 'select');
		elements.push({
			ref,
			role: roleOf(el),
			name: nameOf(el).replace(/\s+/g, ' ').trim(),
			value: hasValue && el.value ? String(el.value) : null,
			href: tag === 'a' ? (el.href || null) : null
		});
		if (elements.length >= MAX) break;
	}

	const bodyText = document.body ? (document.body.innerText || '') : '';
	return {
		url: window.location.href,
		title: document.title || '',
		elements,
		text: bodyText.replace(/\n{3,}/g, '\n\n').trim().slice(0, TEXT_MAX)
	};
})();
"""
)


def _link_target(element: SnapshotElement) -> str | None:
	if not element.href:
		return None
	if not element.href.startswith(_LINK_SCHEMES):
		return None
	return element.href


def _element_line(element: SnapshotElement) -> str:
	name = element.name
	if len(name) > _MAX_NAME_CHARS:
		name = name[: _MAX_NAME_CHARS - 3] + '...'
	line = f'[{element.ref}] {element.role}'
	if name:
		line += f' "{name}"'
	if element.value:
		line += f' value="{element.value}"'
	if href := _link_target(element):
		line += f' -> {href}'
	return line


def render_snapshot(payload: SnapshotPayload) -> Snapshot:
	"""Turn the raw payload into snapshot text plus ref bookkeeping."""
	lines = [f'Title: {payload.title}' if payload.title else 'Title: (untitled)']
	lines.extend(_element_line(element) for element in payload.elements)
	if not payload.elements:
		lines.append('(no interactive elements)')
	if payload.text:
		lines.extend(['', 'Page text:', payload.text])

	ref_hrefs: dict[int, str] = {}
	for element in payload.elements:
		if href := _link_target(element):
			ref_hrefs[element.ref] = href

	max_ref = max((element.ref for element in payload.elements), default=0)
	return Snapshot(text='\n'.join(lines), has_refs=max_ref > 0, max_ref=max_ref, ref_hrefs=ref_hrefs)


async def take_snapshot(driver: BrowserDriver, connection: Any, max_elements: int = 400, max_text: int = 2000) -> Snapshot:
	"""Snapshot the page behind ``connection``."""
	if max_elements < 1:
		max_elements = 1
	payload: Any = await driver.evaluate(connection, SNAPSHOT_SCRIPT, max_elements, max_text)
	try:
		parsed = SnapshotPayload.model_validate(payload)
	except ValidationError as exc:
		raise DriverError(f'unexpected snapshot payload: {exc.error_count()} validation errors') from exc
	return render_snapshot(parsed)
