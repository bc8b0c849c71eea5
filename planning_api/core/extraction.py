# planning_api/core/extraction.py
"""
Extraction of calendar entries from the rendered schedule page.

Three strategies, tried in order by ExtractionCascade until one yields entries:
  A. WidgetStoreStrategy   - read the calendar widget's own event store in-page
  B. ResponseInterceptionStrategy - provoke and parse the portal's AJAX response
  C. DomScrapeStrategy     - parse the rendered event elements out of the HTML
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from bs4 import BeautifulSoup
from pydantic import ValidationError

from .constants import (CALENDAR_CONTAINER_SELECTOR, DOM_EVENT_SELECTOR,
                        DOM_EVENT_TIME_SELECTOR,
                        DOM_EVENT_TITLE_SELECTOR, NEXT_BUTTON_SELECTOR,
                        PREV_BUTTON_SELECTOR,
                        RESPONSE_INTERCEPT_TIMEOUT_SECONDS,
                        TRIGGER_PAUSE_SECONDS)
from ..models.models import RawCalendarEntry

log = logging.getLogger(__name__)


class ExtractionStrategy(Protocol):
    name: str

    async def try_extract(self, page: Any) -> List[RawCalendarEntry]:
        """Returns the entries found, or an empty list."""
        ...


def _to_entries(items: Sequence[Any], source: str) -> List[RawCalendarEntry]:
    """Validates native event dicts, skipping the ones that cannot be read."""
    entries: List[RawCalendarEntry] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            entries.append(RawCalendarEntry.model_validate(item))
        except ValidationError as e:
            log.warning(f"Skipping unreadable {source} event: {e}")
    return entries


# --- Strategy A: in-page widget event store ---

# Reads FullCalendar v3 (jQuery) client events. Returns [] for any other widget.
WIDGET_STORE_SCRIPT = """
() => {
  const calEl = document.querySelector(%s);
  if (!calEl) return [];
  const jq = typeof jQuery !== 'undefined' ? jQuery : (typeof $ !== 'undefined' ? $ : null);
  if (!jq) return [];
  const fmt = (d) => !d ? '' : (d.toISOString ? d.toISOString() : (d.format ? d.format() : String(d)));
  try {
    const $cal = jq(calEl);
    if (!($cal.fullCalendar || $cal.data('fullCalendar'))) return [];
    return $cal.fullCalendar('clientEvents').map(e => ({
      id: e.id || e._id || null,
      title: e.title || '',
      start: fmt(e.start),
      end: fmt(e.end),
      className: Array.isArray(e.className) ? e.className.join(' ') : (typeof e.className === 'string' ? e.className : ''),
      allDay: !!e.allDay,
    }));
  } catch (err) {
    return [];
  }
}
""" % json.dumps(CALENDAR_CONTAINER_SELECTOR)


class WidgetStoreStrategy:
    name = "widget_store"

    def __init__(self, script: str = WIDGET_STORE_SCRIPT):
        self.script = script

    async def try_extract(self, page: Any) -> List[RawCalendarEntry]:
        # Never raises: an absent or unrecognized widget just means "no data"
        try:
            items = await page.evaluate(self.script)
        except Exception as e:
            log.debug(f"Widget store query failed: {e}")
            return []
        if not isinstance(items, list):
            return []
        return _to_entries(items, self.name)


# --- Strategy B: partial-response interception ---

def _events_from_json_text(text: str) -> Optional[List[Any]]:
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return None
    if isinstance(parsed, dict) and isinstance(parsed.get("events"), list):
        return parsed["events"]
    return None


def extract_events_from_payload(content_type: str, text: str) -> Optional[List[Any]]:
    """
    Looks for an `events` array in a portal response body.

    XML bodies are JSF partial responses: each <update> node may carry a CDATA
    block holding JSON. JSON bodies are inspected directly.

    Returns:
        The raw event list, or None if the payload carries none.
    """
    content_type = (content_type or "").lower()
    if "xml" in content_type and "partial-response" in text:
        try:
            soup = BeautifulSoup(text, "xml")
        except Exception as e:
            log.debug(f"Unparseable XML response: {e}")
            soup = None
        if soup is not None:
            for update in soup.find_all("update"):
                events = _events_from_json_text(update.get_text().strip())
                if events is not None:
                    return events

    if "json" in content_type:
        return _events_from_json_text(text)
    return None


class ResponseInterceptionStrategy:
    """
    Listens for XML/JSON responses while clicking `trigger_selectors`, and
    resolves with the first `events` array found. Resolves to [] when nothing
    qualifying arrives within `timeout` seconds.
    """
    name = "response_interception"

    def __init__(
        self,
        trigger_selectors: Sequence[str] = (NEXT_BUTTON_SELECTOR, PREV_BUTTON_SELECTOR),
        timeout: float = RESPONSE_INTERCEPT_TIMEOUT_SECONDS,
        trigger_pause: float = TRIGGER_PAUSE_SECONDS,
    ):
        self.trigger_selectors = list(trigger_selectors)
        self.timeout = timeout
        self.trigger_pause = trigger_pause

    async def _trigger(self, page: Any) -> None:
        # Click each button in turn; stop at the first one that is missing
        for i, selector in enumerate(self.trigger_selectors):
            button = await page.query_selector(selector)
            if button is None:
                log.debug(f"Trigger button not found: {selector}")
                return
            await button.click()
            if i < len(self.trigger_selectors) - 1:
                await asyncio.sleep(self.trigger_pause)

    async def try_extract(self, page: Any) -> List[RawCalendarEntry]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        found: asyncio.Future = loop.create_future()

        async def on_response(response: Any) -> None:
            if found.done():
                return
            try:
                content_type = response.headers.get("content-type", "")
                if "xml" not in content_type and "json" not in content_type:
                    return
                text = await response.text()
            except Exception as e:
                log.debug(f"Could not read response body: {e}")
                return
            events = extract_events_from_payload(content_type, text)
            if events is not None and not found.done():
                found.set_result(events)

        page.on("response", on_response)
        try:
            await self._trigger(page)
            remaining = max(0.0, deadline - loop.time())
            try:
                items = await asyncio.wait_for(found, timeout=remaining)
            except asyncio.TimeoutError:
                log.info(f"No event payload intercepted within {self.timeout}s.")
                return []
        finally:
            page.remove_listener("response", on_response)

        return _to_entries(items, self.name)


# --- Strategy C: DOM scraping ---

def parse_dom_events(html: str) -> List[RawCalendarEntry]:
    """
    Reads rendered calendar event elements out of page HTML.

    Elements without a title sub-element are skipped; ids are synthesized
    from the element position when the element has none.
    """
    soup = BeautifulSoup(html or "", "lxml")
    entries: List[RawCalendarEntry] = []
    for i, el in enumerate(soup.select(DOM_EVENT_SELECTOR)):
        title_el = el.select_one(DOM_EVENT_TITLE_SELECTOR)
        if title_el is None:
            continue
        time_el = el.select_one(DOM_EVENT_TIME_SELECTOR)
        time_text = time_el.get_text(strip=True) if time_el is not None else ""
        entries.append(RawCalendarEntry(
            id=el.get("data-id") or f"dom-{i}",
            title=title_el.get_text("\n", strip=True),
            start=el.get("data-start") or time_text,
            end=el.get("data-end") or "",
            className=" ".join(el.get("class", [])),
        ))
    return entries


class DomScrapeStrategy:
    name = "dom_scrape"

    async def try_extract(self, page: Any) -> List[RawCalendarEntry]:
        html = await page.content()
        return parse_dom_events(html)


# --- Cascade ---

@dataclass
class ExtractionResult:
    entries: List[RawCalendarEntry] = field(default_factory=list)
    strategy: Optional[str] = None  # Name of the strategy that produced the entries

    @property
    def is_empty(self) -> bool:
        return not self.entries


def default_strategies() -> List[ExtractionStrategy]:
    return [WidgetStoreStrategy(), ResponseInterceptionStrategy(), DomScrapeStrategy()]


class ExtractionCascade:
    """
    Runs strategies in order and stops at the first non-empty result.
    All strategies empty is a normal outcome (empty schedule), not an error.
    """

    def __init__(self, strategies: Optional[List[ExtractionStrategy]] = None):
        self.strategies = strategies if strategies is not None else default_strategies()

    async def run(self, page: Any) -> ExtractionResult:
        for strategy in self.strategies:
            entries = await strategy.try_extract(page)
            if entries:
                log.info(f"Strategy '{strategy.name}' found {len(entries)} events.")
                return ExtractionResult(entries=entries, strategy=strategy.name)
            log.info(f"Strategy '{strategy.name}' found no events, trying next...")

        log.warning("All extraction strategies returned no events.")
        return ExtractionResult()


def strategy_for_direction(selector: str, timeout: float = RESPONSE_INTERCEPT_TIMEOUT_SECONDS) -> ResponseInterceptionStrategy:
    """Interception strategy triggered by a single calendar navigation button."""
    return ResponseInterceptionStrategy(trigger_selectors=[selector], timeout=timeout)


def describe_entries(entries: List[RawCalendarEntry]) -> Dict[str, int]:
    """Counts of entries by kind, for log lines."""
    return {
        "total": len(entries),
        "empty": sum(1 for e in entries if e.is_empty),
        "break": sum(1 for e in entries if e.is_break),
    }
