from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .records import Project, TranscriptDocument
from .store import TRANSCRIPTS, DocumentStore

LOGGER = logging.getLogger("prism.search")

DEFAULT_LIMIT = 10
MAX_LIMIT = 50
CONTEXT_CHARS = 50
MAX_MATCHES_PER_DOCUMENT = 5
ELLIPSIS = "..."


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return max(1, min(int(limit), MAX_LIMIT))


@dataclass(frozen=True)
class SnippetMatch:
    text: str
    start_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "startIndex": self.start_index}


@dataclass(frozen=True)
class TranscriptHits:
    transcript: TranscriptDocument
    matches: List[SnippetMatch]
    total_matches: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "videoId": self.transcript.video_id,
            "videoTitle": self.transcript.title,
            "playbackId": self.transcript.playback_id,
            "matches": [match.to_dict() for match in self.matches],
            "totalMatches": self.total_matches,
        }


@dataclass(frozen=True)
class SearchResponse:
    project: Project
    query: str
    results: List[TranscriptHits] = field(default_factory=list)

    @property
    def total_videos(self) -> int:
        return len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projectId": self.project.id,
            "projectName": self.project.name,
            "query": self.query,
            "results": [hit.to_dict() for hit in self.results],
            "totalVideos": self.total_videos,
        }


def extract_snippets(
    text: str,
    query: str,
    *,
    context: int = CONTEXT_CHARS,
    max_matches: int = MAX_MATCHES_PER_DOCUMENT,
) -> tuple[List[SnippetMatch], int]:
    """Return up to ``max_matches`` snippets plus the true match count.

    ``query`` is matched literally and case-insensitively; occurrences never
    overlap.
    """

    pattern = re.compile(re.escape(query), re.IGNORECASE)
    snippets: List[SnippetMatch] = []
    total = 0
    for match in pattern.finditer(text):
        total += 1
        if len(snippets) >= max_matches:
            continue
        start = max(0, match.start() - context)
        end = min(len(text), match.end() + context)
        prefix = ELLIPSIS if start > 0 else ""
        suffix = ELLIPSIS if end < len(text) else ""
        snippets.append(SnippetMatch(text=f"{prefix}{text[start:end]}{suffix}", start_index=match.start()))
    return snippets, total


class TranscriptSearchEngine:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def search(self, project: Project, query: str, limit: int | None = None) -> SearchResponse:
        if not query:
            raise ValueError("query must not be empty")
        limit = clamp_limit(limit)
        started = time.perf_counter()
        documents = self._store.collection(TRANSCRIPTS).find({"projectId": project.id})
        results: List[TranscriptHits] = []
        skipped = 0
        for raw in documents:
            transcript = TranscriptDocument.from_document(raw)
            if transcript is None:
                skipped += 1
                continue
            snippets, total = extract_snippets(transcript.text, query)
            if not total:
                continue
            results.append(TranscriptHits(transcript=transcript, matches=snippets, total_matches=total))
            if len(results) >= limit:
                break
        LOGGER.debug(
            "search project=%s query=%r documents=%d hits=%d skipped=%d duration_ms=%.2f",
            project.id,
            query,
            len(documents),
            len(results),
            skipped,
            (time.perf_counter() - started) * 1000,
        )
        return SearchResponse(project=project, query=query, results=results)
