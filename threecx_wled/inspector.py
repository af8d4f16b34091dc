"""Page inspection capabilities for the 3CX web client.

All markup knowledge (selectors, tag names, data-qa attributes) lives in the
concrete inspector so that a new 3CX UI version only needs a new subclass.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .models import PageProbe, QueueStatTable, RawAgentItem, RawSignal

logger = logging.getLogger(__name__)

NAVIGATION_KEYWORDS = ("switchboard", "dashboard")


class PageInspector(ABC):
    """Read-only queries and navigation primitives against the phone system UI."""

    @abstractmethod
    async def probe(self) -> PageProbe:
        """Collect login-related facts about the current page."""

    @abstractmethod
    async def wait_for_status_view(self, timeout: float = 5.0) -> bool:
        """Wait until the status-bearing view is rendered."""

    @abstractmethod
    async def click_navigation(self, keywords=NAVIGATION_KEYWORDS) -> Optional[str]:
        """Click towards the status-bearing view; returns the strategy used."""

    @abstractmethod
    async def read_status_signals(self) -> List[RawSignal]:
        """Signals from status indicators, in priority order."""

    @abstractmethod
    async def read_queue_stat_table(self) -> Optional[QueueStatTable]:
        """Queue statistics table, or None when absent."""

    @abstractmethod
    async def read_roster_items(self) -> Optional[List[RawAgentItem]]:
        """Roster items, or None when the roster container is absent."""

    @abstractmethod
    async def install_change_observer(self, on_change: Callable[[str], Any]) -> bool:
        """Start delivering DOM change notifications to on_change."""

    @abstractmethod
    async def remove_change_observer(self) -> None:
        """Stop the DOM change observer."""

    @abstractmethod
    async def local_storage(self) -> Dict[str, str]:
        """Contents of window.localStorage."""


# Selector lists for the 3CX v20 web client

LOGIN_FORM_SELECTOR = (
    'form[action*="login"], .login-form, #loginForm, '
    'input[name="username"], input[name="password"], input[type="email"]'
)

LOGGED_IN_SELECTOR = (
    ".user-menu, .user-profile, .logout-button, .user-info, "
    ".switchboard-container, queue-stat, .queue-stats, .queue-container, "
    ".presence-indicator, app-dashboard, app-switchboard"
)

STATUS_VIEW_SELECTOR = "queue-stat"

STATUS_SELECTORS = [
    ".status-indicator",
    ".user-status",
    ".status-icon",
    "[data-status]",
    ".presence-status",
    ".agent-status",
    ".user-presence",
    ".status-display",
    ".status",
    ".presence",
    ".availability",
    ".user-availability",
    ".status-available",
    ".status-away",
    ".status-busy",
    ".status-offline",
    ".status-dnd",
    '[class*="status"]',
    '[class*="presence"]',
    '[id*="status"]',
    '[id*="presence"]',
    "[data-presence]",
    "[data-availability]",
    "[data-user-status]",
]

ROSTER_CONTAINER = "app-all-queue-agents"
ROSTER_ITEM = 'div[data-qa="agent-item"]'

OBSERVER_BINDING = "__presenceChanged"

_PROBE_JS = """
([loginSelector, loggedInSelector, statusViewSelector]) => {
    const keys = Object.keys(window.localStorage || {});
    return {
        url: window.location.href,
        title: document.title,
        login_form: !!document.querySelector(loginSelector),
        logged_in_markers: !!document.querySelector(loggedInSelector),
        auth_token_key: keys.some((k) => /token|auth|session/i.test(k)),
        on_status_view: !!document.querySelector(statusViewSelector),
    };
}
"""

_CLICK_NAVIGATION_JS = """
(keywords) => {
    const framework = [];
    for (const kw of keywords) {
        framework.push(`${kw}-link`, `nav-item[routerlink*="${kw}"]`, `[routerlink*="${kw}"]`);
    }
    for (const selector of framework) {
        const el = document.querySelector(selector);
        if (el) { el.click(); return 'framework'; }
    }
    for (const kw of keywords) {
        const el = document.querySelector(
            `a[href*="${kw}" i], a[title*="${kw}" i], button[title*="${kw}" i]`
        );
        if (el) { el.click(); return 'link'; }
    }
    const candidates = document.querySelectorAll(
        '.menu-item, .nav-item, .sidebar-item, li, button, a, [role="button"], [role="menuitem"]'
    );
    for (const el of candidates) {
        if (el.offsetParent === null) continue;
        const text = (el.innerText || el.textContent || '').toLowerCase();
        if (keywords.some((kw) => text.includes(kw))) { el.click(); return 'text'; }
    }
    return null;
}
"""

_STATUS_SIGNALS_JS = """
([selectors, perSelector, rosterSelector]) => {
    const out = [];
    for (const selector of selectors) {
        let elements;
        try { elements = document.querySelectorAll(selector); } catch (e) { continue; }
        let n = 0;
        for (const el of elements) {
            if (n++ >= perSelector) break;
            const attributes = {};
            for (const attr of el.attributes) {
                if (attr.name.startsWith('data-')) attributes[attr.name] = attr.value;
            }
            out.push({
                selector,
                class_names: Array.from(el.classList),
                text: (el.textContent || '').trim().slice(0, 100),
                attributes,
                in_roster: !!el.closest(rosterSelector),
            });
        }
    }
    return out;
}
"""

_QUEUE_STAT_JS = """
(selector) => {
    const root = document.querySelector(selector);
    if (!root) return null;
    const headerRow = root.querySelector('.qst-l-td');
    const dataRow = root.querySelector('.qst-d-td');
    if (!headerRow || !dataRow) return null;
    return {
        headers: Array.from(headerRow.querySelectorAll('td')).map((td) => td.textContent.trim()),
        values: Array.from(dataRow.querySelectorAll('td')).map((td) => td.textContent.trim()),
    };
}
"""

_ROSTER_JS = """
([containerSelector, itemSelector]) => {
    const container = document.querySelector(containerSelector);
    if (!container) return null;
    return Array.from(container.querySelectorAll(itemSelector)).map((item) => {
        const numberEl = item.querySelector('div[data-qa="number"]');
        const nameEl = item.querySelector('div[data-qa="name"]');
        const queuesEl = item.querySelector('div[data-qa="queues"]');
        const indicator = numberEl
            ? numberEl.querySelector('span.status-indicator, span[class*="status-indicator"]')
            : null;
        return {
            number_text: numberEl ? numberEl.textContent.trim() : '',
            name_title: nameEl ? nameEl.getAttribute('title') : null,
            name_text: nameEl ? nameEl.textContent.trim() : '',
            queues: queuesEl ? queuesEl.textContent.trim() : '',
            indicator_classes: indicator ? Array.from(indicator.classList) : [],
        };
    });
}
"""

_INSTALL_OBSERVER_JS = """
([binding, watched]) => {
    if (window.__presenceObserver) return false;
    const relevant = (node) => {
        const el = node && node.nodeType === 1 ? node : node && node.parentElement;
        return !!(el && watched.some((s) => el.closest(s)));
    };
    window.__presenceObserver = new MutationObserver((mutations) => {
        const hit = mutations.find((m) => relevant(m.target));
        if (hit && typeof window[binding] === 'function') {
            const el = hit.target.nodeType === 1 ? hit.target : hit.target.parentElement;
            window[binding](el ? el.tagName.toLowerCase() : 'unknown');
        }
    });
    window.__presenceObserver.observe(document.body, {
        childList: true, subtree: true, attributes: true, characterData: true,
    });
    return true;
}
"""

_REMOVE_OBSERVER_JS = """
() => {
    if (window.__presenceObserver) {
        window.__presenceObserver.disconnect();
        window.__presenceObserver = null;
    }
}
"""

_LOCAL_STORAGE_JS = """
() => {
    const data = {};
    for (let i = 0; i < localStorage.length; i++) {
        const key = localStorage.key(i);
        data[key] = localStorage.getItem(key);
    }
    return data;
}
"""

OBSERVED_SELECTORS = [ROSTER_CONTAINER, STATUS_VIEW_SELECTOR, ".queue-stat", ".status-indicator", ".status-selector"]


class ThreeCXInspector(PageInspector):
    """PageInspector for the 3CX v20 Angular web client, backed by a Playwright page."""

    def __init__(self, page: Page, signals_per_selector: int = 25):
        self.page = page
        self.signals_per_selector = signals_per_selector
        self._binding_exposed = False

    async def probe(self) -> PageProbe:
        data = await self.page.evaluate(
            _PROBE_JS, [LOGIN_FORM_SELECTOR, LOGGED_IN_SELECTOR, STATUS_VIEW_SELECTOR]
        )
        return PageProbe(**data)

    async def wait_for_status_view(self, timeout: float = 5.0) -> bool:
        try:
            await self.page.wait_for_function(
                f"() => !!document.querySelector('{STATUS_VIEW_SELECTOR}')",
                polling=100,
                timeout=timeout * 1000,
            )
            return True
        except PlaywrightTimeoutError:
            return False

    async def click_navigation(self, keywords=NAVIGATION_KEYWORDS) -> Optional[str]:
        strategy = await self.page.evaluate(_CLICK_NAVIGATION_JS, list(keywords))
        if strategy:
            try:
                await self.page.wait_for_load_state("networkidle", timeout=10000)
            except PlaywrightTimeoutError:
                logger.info("Navigation wait timed out, continuing")
        return strategy

    async def read_status_signals(self) -> List[RawSignal]:
        data = await self.page.evaluate(
            _STATUS_SIGNALS_JS, [STATUS_SELECTORS, self.signals_per_selector, ROSTER_CONTAINER]
        )
        return [RawSignal(**item) for item in data or []]

    async def read_queue_stat_table(self) -> Optional[QueueStatTable]:
        data = await self.page.evaluate(_QUEUE_STAT_JS, STATUS_VIEW_SELECTOR)
        return QueueStatTable(**data) if data else None

    async def read_roster_items(self) -> Optional[List[RawAgentItem]]:
        data = await self.page.evaluate(_ROSTER_JS, [ROSTER_CONTAINER, ROSTER_ITEM])
        if data is None:
            return None
        return [RawAgentItem(**item) for item in data]

    async def install_change_observer(self, on_change: Callable[[str], Any]) -> bool:
        """
        Install the in-page MutationObserver.

        The observer calls an exposed binding, so changes arrive in the host as
        callbacks. Safe to call repeatedly; it re-installs after a page reload.
        """
        if not self._binding_exposed:
            try:
                await self.page.expose_function(OBSERVER_BINDING, on_change)
            except PlaywrightError as e:
                # Already registered on this page
                logger.debug(f"Observer binding not exposed: {e}")
            self._binding_exposed = True

        installed = await self.page.evaluate(_INSTALL_OBSERVER_JS, [OBSERVER_BINDING, OBSERVED_SELECTORS])
        if installed:
            logger.info("Mutation observer installed for real-time status updates")
        return bool(installed)

    async def remove_change_observer(self) -> None:
        await self.page.evaluate(_REMOVE_OBSERVER_JS)

    async def local_storage(self) -> Dict[str, str]:
        return await self.page.evaluate(_LOCAL_STORAGE_JS)
