import pytest

from prism_lib.records import Project
from prism_lib.search import TranscriptSearchEngine, clamp_limit, extract_snippets
from prism_lib.store import MemoryStore

PROJECT = Project(id="p1", user_id="u1", name="Demo", slug="demo")


def _store(*texts: str) -> MemoryStore:
    return MemoryStore(
        {
            "videoTranscripts": [
                {"_id": f"t{index}", "projectId": "p1", "transcriptText": text, "muxAssetId": f"a{index}"}
                for index, text in enumerate(texts)
            ]
        }
    )


def test_short_text_snippet_has_no_ellipsis() -> None:
    snippets, total = extract_snippets("the quick brown fox jumps", "brown")

    assert total == 1
    assert snippets[0].text == "the quick brown fox jumps"
    assert snippets[0].start_index == 10


def test_snippet_context_is_symmetric_and_trimmed() -> None:
    text = "a" * 100 + "needle" + "b" * 100

    snippets, _ = extract_snippets(text, "needle")

    assert snippets[0].text == "..." + "a" * 50 + "needle" + "b" * 50 + "..."
    assert snippets[0].start_index == 100


def test_matching_is_case_insensitive_and_literal() -> None:
    snippets, total = extract_snippets("Price is $5 (approx.) or $5 (APPROX.)", "$5 (approx.)")

    assert total == 2
    assert [snippet.start_index for snippet in snippets] == [9, 25]


def test_snippets_are_capped_but_total_is_exact() -> None:
    text = " ".join(["signal"] * 20)

    snippets, total = extract_snippets(text, "signal")

    assert len(snippets) == 5
    assert total == 20


def test_empty_project_returns_no_results() -> None:
    response = TranscriptSearchEngine(MemoryStore()).search(PROJECT, "anything")

    assert response.to_dict() == {
        "projectId": "p1",
        "projectName": "Demo",
        "query": "anything",
        "results": [],
        "totalVideos": 0,
    }


def test_search_skips_documents_without_matches_and_malformed_ones() -> None:
    store = _store("signals everywhere", "nothing to see")
    store.collection("videoTranscripts").insert_one({"projectId": "p1", "transcriptText": None})

    response = TranscriptSearchEngine(store).search(PROJECT, "signals")

    payload = response.to_dict()
    assert payload["totalVideos"] == 1
    result = payload["results"][0]
    assert result["videoId"] == "a0"
    assert result["videoTitle"] == "Untitled Video"
    assert result["totalMatches"] == 1
    assert result["matches"][0] == {"text": "signals everywhere", "startIndex": 0}


def test_search_limit_counts_documents() -> None:
    store = _store(*["match here"] * 4)

    response = TranscriptSearchEngine(store).search(PROJECT, "match", limit=2)

    assert response.total_videos == 2


def test_search_rejects_empty_query() -> None:
    with pytest.raises(ValueError):
        TranscriptSearchEngine(MemoryStore()).search(PROJECT, "")


@pytest.mark.parametrize(("raw", "expected"), [(None, 10), (0, 1), (7, 7), (500, 50)])
def test_clamp_limit(raw, expected) -> None:
    assert clamp_limit(raw) == expected
