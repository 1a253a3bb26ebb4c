import json

from fastapi.testclient import TestClient


def _write_records(directory) -> None:
    records = [
        {
            "kind": "education_program",
            "id": "p-1",
            "program_name": "Nursing, AS",
            "degree": "AS",
            "campus": "Kapiolani CC",
            "search_keywords": ["nursing"],
        },
        {
            "kind": "education_program",
            "id": "p-2",
            "program_name": "Culinary Arts, AAS",
            "degree": "AAS",
            "campus": "Kapiolani CC",
        },
        {
            "kind": "pathway_program",
            "id": "hs-1",
            "program_of_study": "Health Services",
            "career_cluster": "Health Science",
            "search_keywords": ["nursing"],
        },
        {"kind": "career_stat", "id": "c-1", "subject_area": "Nursing", "unique_postings": 40},
        {"kind": "unknown_kind", "id": "x-1"},
    ]
    path = directory / "records.jsonl"
    path.write_text("\n".join(json.dumps(record) for record in records), encoding="utf-8")


def test_api_recommend_cache_trace_metrics(tmp_path, monkeypatch) -> None:
    _write_records(tmp_path)
    monkeypatch.setenv("PATHWAY_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    # Import after environment setup so the app loads the records above.
    from pathway_advisor.api.main import app

    client = TestClient(app)

    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["records"]["education_programs"] == 2
    assert health.json()["analyzer_mode"] == "keyword"

    recommend = client.post("/recommend", json={"message": "show me nursing programs"})
    assert recommend.status_code == 200
    payload = recommend.json()
    assert payload["total_results"] >= 1
    assert payload["queries_executed"][0] == "search_programs"
    assert "profile_fingerprint" not in payload

    blank = client.post("/recommend", json={"message": "   "})
    assert blank.status_code == 400

    trace = client.get(f"/traces/{payload['trace_id']}")
    assert trace.status_code == 200
    assert trace.json()["tool_traces"]
    assert client.get("/traces/does-not-exist").status_code == 404

    warmup = client.post("/cache/warmup", json={"messages": ["nursing"]})
    assert warmup.status_code == 200
    assert warmup.json()["items"] == {"nursing": "warmed"}

    stats = client.get("/cache/stats")
    assert stats.status_code == 200
    assert stats.json()["entry_count"] >= 2

    invalidated = client.post("/cache/invalidate", json={"tag": "answer"})
    assert invalidated.status_code == 200
    assert invalidated.json()["removed"] >= 2
    assert client.post("/cache/invalidate", json={"tag": "no-such-tag"}).status_code == 404

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert metrics.json()["total_requests"] >= 2
