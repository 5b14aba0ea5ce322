"""Typed views over raw store documents.

Each ``from_document`` returns ``None`` for malformed input so callers treat
a broken document exactly like a missing one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

TIERS = ("free", "pro", "team", "enterprise")
EFFECTIVE_STATUSES = ("active", "trialing")
RULE_CATEGORIES = (
    "architecture",
    "styling",
    "security",
    "performance",
    "testing",
    "documentation",
    "custom",
)
DEFAULT_RULE_PRIORITY = 50
UNTITLED_VIDEO = "Untitled Video"


def document_id(document: Mapping[str, Any]) -> str | None:
    raw = document.get("_id", document.get("id"))
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def _text(document: Mapping[str, Any], key: str) -> str | None:
    value = document.get(key)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class Project:
    id: str
    user_id: str
    name: str
    slug: str

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "Project | None":
        project_id = document_id(document)
        user_id = _text(document, "userId")
        slug = _text(document, "slug")
        if not project_id or not user_id or not slug:
            return None
        return cls(id=project_id, user_id=user_id, name=_text(document, "name") or slug, slug=slug)


@dataclass(frozen=True)
class TranscriptDocument:
    id: str
    project_id: str
    text: str
    video_id: str | None
    playback_id: str | None
    title: str

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "TranscriptDocument | None":
        transcript_id = document_id(document)
        project_id = _text(document, "projectId")
        text = document.get("transcriptText")
        if not transcript_id or not project_id or not isinstance(text, str):
            return None
        return cls(
            id=transcript_id,
            project_id=project_id,
            text=text,
            video_id=_text(document, "muxAssetId"),
            playback_id=_text(document, "muxPlaybackId"),
            title=_text(document, "videoTitle") or UNTITLED_VIDEO,
        )


@dataclass(frozen=True)
class Rule:
    id: str
    project_id: str
    name: str
    content: str
    category: str
    priority: int
    is_active: bool = True
    transcript_id: str | None = None

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "Rule | None":
        rule_id = document_id(document)
        project_id = _text(document, "projectId")
        name = _text(document, "name")
        content = document.get("content")
        category = _text(document, "category")
        if not rule_id or not project_id or not name or not isinstance(content, str):
            return None
        if category not in RULE_CATEGORIES:
            return None
        priority = document.get("priority", DEFAULT_RULE_PRIORITY)
        if isinstance(priority, bool) or not isinstance(priority, int):
            priority = DEFAULT_RULE_PRIORITY
        is_active = document.get("isActive", True)
        return cls(
            id=rule_id,
            project_id=project_id,
            name=name,
            content=content,
            category=category,
            priority=priority,
            is_active=is_active is not False,
            transcript_id=_text(document, "transcriptId"),
        )


@dataclass(frozen=True)
class SubscriptionRecord:
    user_id: str
    tier: str
    status: str

    @property
    def effective(self) -> bool:
        return self.status in EFFECTIVE_STATUSES

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "SubscriptionRecord | None":
        user_id = _text(document, "userId")
        tier = _text(document, "tier")
        status = _text(document, "status")
        if not user_id or tier not in TIERS or not status:
            return None
        return cls(user_id=user_id, tier=tier, status=status)
