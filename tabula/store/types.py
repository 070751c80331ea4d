from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any

EVENT_TYPES = ("created", "updated", "activated", "removed")
DECISIONS = ("keep", "close", "unsure")

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_ANALYZE_BATCH_SIZE = 30


def _require_int(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return value


def _optional_int(data: dict[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return value


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


def _require_str(data: dict[str, Any], key: str) -> str:
    value = _optional_str(data, key)
    if value is None:
        raise ValueError(f"{key} is required")
    return value


def _require_dict(value: Any, name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be an object")
    return value


@dataclass(frozen=True)
class TabSnapshot:
    captured_at: int
    screenshot_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"screenshotPath": self.screenshot_path, "capturedAt": self.captured_at}

    @classmethod
    def from_dict(cls, data: Any) -> TabSnapshot:
        data = _require_dict(data, "snapshot")
        return cls(
            captured_at=_require_int(data, "capturedAt"),
            screenshot_path=_optional_str(data, "screenshotPath"),
        )


@dataclass(frozen=True)
class TabSuggestion:
    decision: str
    reason: str
    scored_at: int
    category: str | None = None
    digest: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.decision,
            "reason": self.reason,
            "category": self.category,
            "digest": self.digest,
            "scoredAt": self.scored_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> TabSuggestion:
        data = _require_dict(data, "suggestion")
        return cls(
            decision=_require_str(data, "decision"),
            reason=_optional_str(data, "reason") or "",
            scored_at=_require_int(data, "scoredAt"),
            category=_optional_str(data, "category"),
            digest=_optional_str(data, "digest"),
        )


@dataclass
class TabRecord:
    """Merged local state of one browser tab id."""

    id: int
    created_at: int
    window_id: int | None = None
    url: str | None = None
    title: str | None = None
    fav_icon_url: str | None = None
    last_active_at: int | None = None
    total_active_ms: int = 0
    is_active: bool = False
    closed_at: int | None = None
    description: str | None = None
    snapshot: TabSnapshot | None = None
    suggestion: TabSuggestion | None = None

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    def copy(self) -> TabRecord:
        # Snapshot and suggestion are frozen, so a shallow copy is independent.
        return dataclasses.replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "windowId": self.window_id,
            "url": self.url,
            "title": self.title,
            "favIconUrl": self.fav_icon_url,
            "createdAt": self.created_at,
            "lastActiveAt": self.last_active_at,
            "totalActiveMs": self.total_active_ms,
            "isActive": self.is_active,
            "closedAt": self.closed_at,
            "description": self.description,
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
            "suggestion": self.suggestion.to_dict() if self.suggestion else None,
        }

    @classmethod
    def from_dict(cls, data: Any) -> TabRecord:
        data = _require_dict(data, "tab record")
        snapshot = data.get("snapshot")
        suggestion = data.get("suggestion")
        return cls(
            id=_require_int(data, "id"),
            created_at=_require_int(data, "createdAt"),
            window_id=_optional_int(data, "windowId"),
            url=_optional_str(data, "url"),
            title=_optional_str(data, "title"),
            fav_icon_url=_optional_str(data, "favIconUrl"),
            last_active_at=_optional_int(data, "lastActiveAt"),
            total_active_ms=_optional_int(data, "totalActiveMs") or 0,
            is_active=bool(data.get("isActive", False)),
            closed_at=_optional_int(data, "closedAt"),
            description=_optional_str(data, "description"),
            snapshot=TabSnapshot.from_dict(snapshot) if snapshot is not None else None,
            suggestion=TabSuggestion.from_dict(suggestion) if suggestion is not None else None,
        )


@dataclass(frozen=True)
class TabDescriptor:
    """Tab fields as reported by the browser extension."""

    id: int
    created_at: int
    window_id: int | None = None
    url: str | None = None
    title: str | None = None
    fav_icon_url: str | None = None
    last_active_at: int | None = None
    total_active_ms: int = 0
    is_active: bool = False
    description: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> TabDescriptor:
        data = _require_dict(data, "tab")
        is_active = data.get("isActive", False)
        if not isinstance(is_active, bool):
            raise ValueError("isActive must be a boolean")
        return cls(
            id=_require_int(data, "id"),
            created_at=_require_int(data, "createdAt"),
            window_id=_optional_int(data, "windowId"),
            url=_optional_str(data, "url"),
            title=_optional_str(data, "title"),
            fav_icon_url=_optional_str(data, "favIconUrl"),
            last_active_at=_optional_int(data, "lastActiveAt"),
            total_active_ms=_optional_int(data, "totalActiveMs") or 0,
            is_active=is_active,
            description=_optional_str(data, "description"),
        )


@dataclass(frozen=True)
class TabEvent:
    type: str
    tab: TabDescriptor
    timestamp: int

    @classmethod
    def from_dict(cls, data: Any) -> TabEvent:
        data = _require_dict(data, "event")
        event_type = data.get("type")
        if event_type not in EVENT_TYPES:
            raise ValueError(f"unknown event type: {event_type!r}")
        return cls(
            type=event_type,
            tab=TabDescriptor.from_dict(data.get("tab")),
            timestamp=_require_int(data, "timestamp"),
        )


@dataclass(frozen=True)
class CapturePayload:
    tab: TabDescriptor
    captured_at: int
    screenshot_base64: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> CapturePayload:
        data = _require_dict(data, "capture")
        key = "screenshotBase64" if "screenshotBase64" in data else "screenshotPayload"
        return cls(
            tab=TabDescriptor.from_dict(data.get("tab")),
            captured_at=_require_int(data, "capturedAt"),
            screenshot_base64=_optional_str(data, key) or None,
        )


@dataclass(frozen=True)
class SyncPayload:
    open_ids: frozenset[int]

    @classmethod
    def from_dict(cls, data: Any) -> SyncPayload:
        data = _require_dict(data, "sync")
        raw = data.get("tab_ids", data.get("openIds"))
        if not isinstance(raw, list):
            raise ValueError("tab_ids must be a list")
        ids: set[int] = set()
        for item in raw:
            if isinstance(item, bool) or not isinstance(item, int):
                raise ValueError("tab_ids must contain integers")
            ids.add(item)
        return cls(open_ids=frozenset(ids))


@dataclass
class Settings:
    api_key: str | None = None
    base_url: str | None = DEFAULT_BASE_URL
    model: str | None = DEFAULT_MODEL
    user_context: str | None = None
    analyze_batch_size: int | None = DEFAULT_ANALYZE_BATCH_SIZE

    def to_dict(self) -> dict[str, Any]:
        return {
            "openaiApiKey": self.api_key,
            "baseUrl": self.base_url,
            "model": self.model,
            "userContext": self.user_context,
            "analyzeBatchSize": self.analyze_batch_size,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Settings:
        data = _require_dict(data, "settings")
        batch_size = _optional_int(data, "analyzeBatchSize")
        if batch_size is not None and batch_size < 0:
            raise ValueError("analyzeBatchSize must not be negative")
        return cls(
            api_key=_optional_str(data, "openaiApiKey"),
            base_url=_optional_str(data, "baseUrl"),
            model=_optional_str(data, "model"),
            user_context=_optional_str(data, "userContext"),
            analyze_batch_size=batch_size,
        )

    def resolved_base_url(self) -> str:
        return (self.base_url or "").strip() or DEFAULT_BASE_URL

    def resolved_model(self) -> str:
        return (self.model or "").strip() or DEFAULT_MODEL

    def resolved_batch_size(self) -> int:
        return self.analyze_batch_size or DEFAULT_ANALYZE_BATCH_SIZE


@dataclass(frozen=True)
class DailyReport:
    date: str
    content: str
    generated_at: int

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date, "content": self.content, "generatedAt": self.generated_at}

    @classmethod
    def from_dict(cls, data: Any) -> DailyReport:
        data = _require_dict(data, "report")
        return cls(
            date=_require_str(data, "date"),
            content=_require_str(data, "content"),
            generated_at=_require_int(data, "generatedAt"),
        )


@dataclass(frozen=True)
class StorageStats:
    total: int
    open: int
    closed: int

    def to_dict(self) -> dict[str, int]:
        return {"total": self.total, "open": self.open, "closed": self.closed}
