from __future__ import annotations

import base64
import json
import logging
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from .errors import AIParseError, AIRequestError, ConfigurationError
from .store.types import DECISIONS, Settings, TabRecord, TabSuggestion
from .store.utils import local_date_str, now_ms

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 120
CLASSIFY_TEMPERATURE = 0.2
SUMMARIZE_TEMPERATURE = 0.3

MISSING_API_KEY = "Missing OpenAI API key. Please configure it in settings."
NO_TABS_REPORT = "No tabs to report on."

DESCRIPTION_PROMPT_CHARS = 3000
REPORT_SUMMARY_CHARS = 300

TAB_CATEGORIES = """
Categories to classify tabs:
- work: Work-related tasks, projects, documentation
- research: Learning, tutorials, technical documentation
- communication: Email, chat, social media
- entertainment: Videos, games, news, casual browsing
- shopping: E-commerce, product research
- reference: Bookmarked pages, tools kept open for reference
- utility: Settings, admin panels, dev tools
"""

CLASSIFY_SYSTEM_PROMPT = (
    "You are a tab cleanup assistant. Classify and decide whether each tab should be kept, "
    "closed, or is unsure. Consider the user's context and work habits."
)

CLASSIFY_PROMPT = """Analyze these browser tabs and suggest which to keep or close.

{categories}
{user_context}

Return JSON array only. Each item must have:
- "tabId": number
- "category": one of [work, research, communication, entertainment, shopping, reference, utility]
- "decision": "keep" | "close" | "unsure"
- "reason": brief explanation
- "digest": a concise 1-2 sentence summary of the tab's content/purpose \
(in the same language as the page content)

Base decisions on:
1. Tab's relevance to user's current work/goals
2. How recently it was active
3. Whether the content is transient or worth keeping
4. Category - entertainment tabs idle for long are good candidates to close"""

SUMMARIZE_SYSTEM_PROMPT = (
    "You summarize browsing activity as a daily report with key themes, tasks, and next "
    "actions. Be concise and actionable. Use markdown formatting. The input is grouped by "
    "domain, each tab has a title, active time, and optionally a category tag with content "
    "summary."
)

SUMMARIZE_PROMPT = """Generate a concise daily report for {today} based on the user's \
browsing activity.

Include:
- Main themes and topics
- Key activities and progress
- Open questions or unfinished tasks
- Suggested follow-ups for tomorrow{user_context}

Browsing activity grouped by domain:

{activity}"""

ScreenshotLoader = Callable[[TabRecord], "bytes | None"]


def _build_client(*, api_key: str, base_url: str, timeout: float) -> Any:
    from openai import OpenAI  # type: ignore

    return OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)


def truncate_text(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return f"{text[:max_chars]}..."


def extract_domain(url: str | None) -> str:
    if not url or "://" not in url:
        return "unknown"
    return url.split("://", 1)[1].split("/", 1)[0]


def _user_context_block(settings: Settings, heading: str) -> str:
    context = (settings.user_context or "").strip()
    if not context:
        return ""
    return f"\n\n{heading}\n{context}"


def _message_stats(messages: Sequence[dict[str, Any]]) -> tuple[int, int, int]:
    """Request size in bytes, image count and approximate word count (no image data)."""
    body = json.dumps(list(messages))
    images = body.count("image_url")
    words = 0
    for message in messages:
        content = json.dumps(message.get("content"))
        words += len(content.split("base64,", 1)[0].split())
    return len(body.encode("utf-8")), images, words


def call_chat(
    settings: Settings,
    messages: Sequence[dict[str, Any]],
    *,
    temperature: float,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> str:
    """Send one chat-completions request and return the first choice's text."""
    api_key = (settings.api_key or "").strip()
    if not api_key:
        raise ConfigurationError(MISSING_API_KEY)
    base_url = settings.resolved_base_url()
    model = settings.resolved_model()
    size, images, words = _message_stats(messages)
    logger.info(
        "ai request: model=%s base_url=%s messages=%s size=%.2fKB words=~%s images=%s",
        model,
        base_url,
        len(messages),
        size / 1024,
        words,
        images,
    )
    started = time.monotonic()
    try:
        client = _build_client(api_key=api_key, base_url=base_url, timeout=timeout)
        resp = client.chat.completions.create(
            model=model,
            messages=list(messages),
            temperature=temperature,
        )
    except Exception as exc:
        logger.exception(
            "ai request failed",
            extra={"model": model, "base_url": base_url},
            exc_info=exc,
        )
        raise AIRequestError(f"Request failed: {exc}") from exc
    elapsed = time.monotonic() - started
    choices = getattr(resp, "choices", None) or []
    content = choices[0].message.content if choices else None
    if not content:
        raise AIRequestError("No response from API")
    logger.info(
        "ai response: %s words, %s bytes in %.2fs",
        len(content.split()),
        len(content.encode("utf-8")),
        elapsed,
    )
    return content


def format_tab_for_prompt(tab: TabRecord) -> str:
    lines = [
        f"tabId: {tab.id}",
        f"title: {tab.title or ''}",
        f"url: {tab.url or ''}",
        f"createdAt: {tab.created_at}",
        f"lastActiveAt: {tab.last_active_at}",
        f"totalActiveMs: {tab.total_active_ms}",
    ]
    if tab.description:
        lines.append(f"content: {truncate_text(tab.description, DESCRIPTION_PROMPT_CHARS)}")
    return "\n".join(lines)


def extract_json_array(content: str) -> list[Any]:
    start = content.find("[")
    end = content.rfind("]")
    if start < 0:
        raise AIParseError("No JSON array found")
    if end < start:
        raise AIParseError("No closing bracket found")
    try:
        data = json.loads(content[start : end + 1])
    except json.JSONDecodeError as exc:
        raise AIParseError(f"Failed to parse JSON: {exc}") from exc
    if not isinstance(data, list):
        raise AIParseError("Failed to parse JSON: expected an array")
    return data


def parse_suggestions(content: str, *, scored_at: int) -> dict[int, TabSuggestion]:
    suggestions: dict[int, TabSuggestion] = {}
    for item in extract_json_array(content):
        if not isinstance(item, dict):
            raise AIParseError("Failed to parse JSON: suggestion must be an object")
        tab_id = item.get("tabId")
        decision = item.get("decision")
        reason = item.get("reason")
        if isinstance(tab_id, bool) or not isinstance(tab_id, int):
            raise AIParseError("Failed to parse JSON: tabId must be a number")
        if not isinstance(decision, str) or not isinstance(reason, str):
            raise AIParseError("Failed to parse JSON: decision and reason are required")
        if decision not in DECISIONS:
            logger.warning("unexpected decision %r for tab %s", decision, tab_id)
        category = item.get("category")
        digest = item.get("digest")
        suggestions[tab_id] = TabSuggestion(
            decision=decision,
            reason=reason,
            category=category if isinstance(category, str) else None,
            digest=digest if isinstance(digest, str) else None,
            scored_at=scored_at,
        )
    return suggestions


def read_screenshot(tab: TabRecord) -> bytes | None:
    if tab.snapshot is None or not tab.snapshot.screenshot_path:
        return None
    try:
        return Path(tab.snapshot.screenshot_path).read_bytes()
    except OSError:
        return None


def build_classify_messages(
    tabs: Sequence[TabRecord],
    settings: Settings,
    *,
    screenshot_loader: ScreenshotLoader = read_screenshot,
) -> list[dict[str, Any]]:
    prompt = CLASSIFY_PROMPT.format(
        categories=TAB_CATEGORIES,
        user_context=_user_context_block(settings, "User's context and preferences:"),
    )
    parts: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
    for tab in tabs:
        parts.append({"type": "text", "text": f"\n\n{format_tab_for_prompt(tab)}"})
        image = screenshot_loader(tab)
        if image:
            encoded = base64.b64encode(image).decode("ascii")
            parts.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/jpeg;base64,{encoded}", "detail": "low"},
                }
            )
    return [
        {"role": "system", "content": CLASSIFY_SYSTEM_PROMPT},
        {"role": "user", "content": parts},
    ]


def classify(
    tabs: Sequence[TabRecord],
    settings: Settings,
    *,
    timeout: float = DEFAULT_TIMEOUT_S,
    screenshot_loader: ScreenshotLoader = read_screenshot,
    now: int | None = None,
) -> dict[int, TabSuggestion]:
    """Ask the model to categorize ``tabs`` and suggest keep/close/unsure.

    Returns suggestions keyed by tab id; ids the model invents are returned as
    well and are expected to be ignored by whoever applies the result.
    """
    if not tabs:
        return {}
    messages = build_classify_messages(tabs, settings, screenshot_loader=screenshot_loader)
    content = call_chat(settings, messages, temperature=CLASSIFY_TEMPERATURE, timeout=timeout)
    return parse_suggestions(content, scored_at=now if now is not None else now_ms())


def _report_line(tab: TabRecord) -> str:
    title = tab.title or "Untitled"
    if tab.suggestion is not None:
        category = tab.suggestion.category or "uncategorized"
        summary_source = tab.suggestion.digest or tab.description
        summary = truncate_text(summary_source, REPORT_SUMMARY_CHARS) if summary_source else ""
        detail = f"[{category}] {summary}" if summary else f"[{category}]"
    else:
        detail = truncate_text(tab.description, REPORT_SUMMARY_CHARS) if tab.description else ""
    line = f"  - {title} ({tab.total_active_ms}ms)"
    if detail:
        line = f"{line}\n    {detail}"
    return line


def group_by_domain(tabs: Sequence[TabRecord]) -> dict[str, list[TabRecord]]:
    groups: dict[str, list[TabRecord]] = {}
    for tab in tabs:
        groups.setdefault(extract_domain(tab.url), []).append(tab)
    return groups


def build_summary_messages(
    tabs: Sequence[TabRecord], settings: Settings, *, today: str
) -> list[dict[str, Any]]:
    sections = [
        f"## {domain}\n" + "\n".join(_report_line(tab) for tab in domain_tabs)
        for domain, domain_tabs in group_by_domain(tabs).items()
    ]
    prompt = SUMMARIZE_PROMPT.format(
        today=today,
        user_context=_user_context_block(settings, "User's context and work preferences:"),
        activity="\n\n".join(sections),
    )
    return [
        {"role": "system", "content": SUMMARIZE_SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


def summarize(
    tabs: Sequence[TabRecord],
    settings: Settings,
    *,
    timeout: float = DEFAULT_TIMEOUT_S,
    today: str | None = None,
) -> str:
    if not tabs:
        logger.info("report: no tabs to report on")
        return NO_TABS_REPORT
    logger.info(
        "report: %s tabs, %s with suggestion, %s with description",
        len(tabs),
        sum(1 for tab in tabs if tab.suggestion is not None),
        sum(1 for tab in tabs if tab.description),
    )
    messages = build_summary_messages(tabs, settings, today=today or local_date_str())
    return call_chat(settings, messages, temperature=SUMMARIZE_TEMPERATURE, timeout=timeout)
