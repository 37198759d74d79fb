import json

import httpx


SCORE_JSON = json.dumps(
    {
        "scores": {"ai_experience": {"score": 4, "reason": "shipped an LLM feature"}},
        "total_score": 78,
        "recommendation_level": "Recommended",
        "overall_comment": "Good fit.",
    }
)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ai"]["total_count"] == 2


def test_score_endpoint_caches_results(client, provider):
    provider.script = {"sk-primary": [SCORE_JSON]}
    body = {"resume_text": "Jane Doe, PM", "opportunity": {"id": "opp-1", "title": "AI PM"}}

    r1 = client.post("/ai/score", json=body)
    r2 = client.post("/ai/score", json=body)

    assert r1.status_code == 200, r1.text
    d1, d2 = r1.json(), r2.json()
    assert d1["success"] is True
    assert d1["data"]["total_score"] == 78.0
    assert d1["meta"]["from_cache"] is False
    assert d2["meta"]["from_cache"] is True
    assert d2["data"] == d1["data"]
    assert len(provider.calls) == 1


def test_score_endpoint_degrades_to_template(client, provider):
    provider.script = {
        "sk-primary": [httpx.Response(429, text="rate limit")],
        "sk-backup": [httpx.Response(402, text="insufficient balance")],
    }

    r = client.post("/ai/score", json={"resume_text": "Jane", "opportunity": {"id": "x"}})

    assert r.status_code == 200
    data = r.json()
    assert data["success"] is False
    assert data["meta"]["fallback"] is True
    assert data["data"]["total_score"] == 0
    assert len(provider.calls) == 3


def test_score_endpoint_validates_body(client):
    r = client.post("/ai/score", json={"resume_text": ""})
    assert r.status_code == 400
    assert r.json()["success"] is False


def test_gap_analysis_endpoint(client, provider):
    report = {"overall_score": 70, "dimension_scores": {"core_competency": {"score": 10, "max_score": 15}}}
    provider.script = {"sk-primary": [json.dumps(report)]}

    r = client.post("/ai/gap-analysis", json={"resume_text": "Jane", "opportunity": {"title": "AI PM"}})

    assert r.status_code == 200, r.text
    assert r.json()["data"]["overall_score"] == 70


def test_gap_analysis_bad_output_is_502(client, provider):
    provider.script = {"sk-primary": ["no json here"]}
    r = client.post("/ai/gap-analysis", json={"resume_text": "Jane", "opportunity": {"title": "AI PM"}})
    assert r.status_code == 502
    body = r.json()
    assert body["success"] is False
    assert body["details"]["ai_response"] == "no json here"


def test_gap_analysis_provider_down_is_503(app, provider):
    from fastapi.testclient import TestClient

    provider.script = {
        "sk-primary": [httpx.Response(401, text="bad key")],
        "sk-backup": [httpx.Response(401, text="bad key")],
    }
    app.state.gateway.disable("backup")
    client = TestClient(app)
    for _ in range(2):
        client.post("/ai/gap-analysis", json={"resume_text": "Jane", "opportunity": {"title": "AI PM"}})

    r = client.post("/ai/gap-analysis", json={"resume_text": "Jane", "opportunity": {"title": "AI PM"}})
    assert r.status_code == 503
    assert r.json()["success"] is False


def test_generate_email_endpoint(client, provider):
    provider.script = {"sk-primary": ["Subject: Hello from Jane\nBody: Dear team,\nI would love to join."]}

    r = client.post(
        "/ai/generate-email",
        json={"user_name": "Jane", "resume_text": "PM", "opportunity": {"title": "AI PM", "company": "Acme"}},
    )

    assert r.status_code == 200
    data = r.json()
    assert data["subject"] == "Hello from Jane"
    assert data["body"] == "Dear team,\nI would love to join."
    assert data["fallback"] is False


def test_generate_email_falls_back_to_template(app, provider):
    from fastapi.testclient import TestClient

    for name in ("primary", "backup"):
        app.state.gateway.disable(name)

    r = TestClient(app).post("/ai/generate-email", json={"user_name": "Jane", "opportunity": {"title": "AI PM"}})

    assert r.status_code == 200
    data = r.json()
    assert data["fallback"] is True
    assert data["subject"] == "Application for AI PM - Jane"
    assert provider.calls == []


def test_status_endpoint(client):
    r = client.get("/ai/status")
    assert r.json() == {"current_key": "primary", "available_count": 2, "total_count": 2}


def test_admin_endpoints_require_token(client):
    assert client.post("/ai/keys/switch").status_code == 403
    assert client.post("/ai/keys/switch", headers={"X-Admin-Token": "wrong"}).status_code == 403


def test_admin_disabled_without_configured_token(make_gateway, make_client, provider):
    from fastapi.testclient import TestClient

    from backend.jobdesk.main import Services, create_app

    gw = make_gateway(("a", 1, 3))
    app = create_app(Services(gateway=gw, completion_client=make_client(gw, provider), score_cache=None), admin_token="")
    r = TestClient(app).get("/ai/keys", headers={"X-Admin-Token": ""})
    assert r.status_code == 403
    assert "disabled" in r.json()["error"]


def test_key_administration_flow(client, admin_headers):
    r = client.post("/ai/keys/switch", headers=admin_headers)
    assert r.json()["status"]["current_key"] == "backup"

    r = client.post("/ai/keys", headers=admin_headers, json={"key": "sk-extra", "name": "extra", "priority": 0})
    assert r.status_code == 201
    assert r.json()["key"]["key"] != "sk-extra"
    assert r.json()["status"]["total_count"] == 3

    r = client.post("/ai/keys/backup/disable", headers=admin_headers)
    assert r.json()["status"]["available_count"] == 2

    r = client.post("/ai/keys/backup/enable", headers=admin_headers)
    assert r.json()["status"]["available_count"] == 3

    assert client.post("/ai/keys/nope/disable", headers=admin_headers).status_code == 404

    r = client.post("/ai/keys/reset", headers=admin_headers)
    assert r.status_code == 200

    keys = client.get("/ai/keys", headers=admin_headers).json()["keys"]
    assert [k["name"] for k in keys] == ["extra", "primary", "backup"]
    assert "sk-primary" not in json.dumps(keys)


def test_clear_score_cache(client, provider, admin_headers):
    provider.script = {"sk-primary": [SCORE_JSON]}
    client.post("/ai/score", json={"resume_text": "Jane", "opportunity": {"id": "1"}})

    r = client.delete("/ai/score-cache", headers=admin_headers)

    assert r.json() == {"success": True, "removed": 1}


def test_startup_and_shutdown_manage_scheduler(make_gateway, make_client, provider):
    from fastapi.testclient import TestClient

    from backend.jobdesk.main import Services, create_app
    from backend.jobdesk.services.key_reset_scheduler import ErrorCountResetScheduler

    gw = make_gateway(("a", 1, 3))
    scheduler = ErrorCountResetScheduler(gw, interval_s=3600)
    app = create_app(
        Services(gateway=gw, completion_client=make_client(gw, provider), score_cache=None, scheduler=scheduler)
    )

    with TestClient(app):
        assert scheduler.running
    assert not scheduler.running


def test_resume_optimization_endpoint(client, provider):
    report = {
        "quantitative_assessment": {"total_score": 80},
        "dimensional_optimization": {"product_works": ["Publish a demo"]},
        "core_description_rewrite": [{"original": "a", "optimized": "b"}],
        "opportunity_mining": {"missing_elements": ["demo"]},
    }
    provider.script = {"sk-primary": [json.dumps(report)]}

    r = client.post(
        "/ai/resume-optimization",
        json={"resume_text": "Led the chatbot project for 1000 users", "opportunity": {"title": "AI PM", "company": "Acme"}},
    )

    assert r.status_code == 200, r.text
    data = r.json()
    assert data["success"] is True
    assert data["fallback"] is False
    assert data["report"] == report
    assert data["metadata"]["company"] == "Acme"
    assert data["metadata"]["generated_at"]


def test_resume_optimization_falls_back_to_template(app, provider):
    from fastapi.testclient import TestClient

    for name in ("primary", "backup"):
        app.state.gateway.disable(name)

    r = TestClient(app).post("/ai/resume-optimization", json={"opportunity": {"title": "AI PM"}})

    assert r.status_code == 200
    data = r.json()
    assert data["fallback"] is True
    assert "summary" in data["report"]
    assert "Not provided" in data["raw_text"]
    assert provider.calls == []


def test_add_blank_key_is_rejected(client, admin_headers):
    r = client.post("/ai/keys", headers=admin_headers, json={"key": "   ", "name": "blank"})

    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert "empty" in body["details"]["reason"]
    assert client.get("/ai/status").json()["total_count"] == 2
