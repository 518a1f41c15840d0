import os
import unittest
from unittest import mock

from fastapi.testclient import TestClient

from app.core.auth import is_protected_path, password_hash
from app.core.settings import Settings
from app.services.llm.client import LLMDisabledError
from app.services.research.service import ResearchService
from main import create_app

from fakes import FakeLLM

MODULE_BODY = {
    "moduleId": "psp_detection",
    "input": {"companyName": "Acme Pay", "domain": "acme.com", "region": "LATAM", "industry": "Fintech"},
}


def _settings(**env) -> Settings:
    with mock.patch.dict(os.environ, env, clear=True):
        return Settings()


def _client(llm: FakeLLM, **env) -> TestClient:
    settings = _settings(**env)
    service = ResearchService(llm, markers=settings.extraction_markers())
    return TestClient(create_app(settings, service=service))


class TestResearchEndpoints(unittest.TestCase):
    def test_module_success(self):
        text = '<<<JSON_START>>>{"psp_count": 1}<<<JSON_END>>>'
        resp = _client(FakeLLM(replies=[text])).post("/api/research/module", json=MODULE_BODY)
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["moduleId"], "psp_detection")
        self.assertEqual(body["data"], {"psp_count": 1})
        self.assertEqual(body["rawText"], text)
        self.assertTrue(body["succeeded"])
        self.assertEqual(body["strategy"], "delimited")

    def test_module_parse_failure_is_not_an_error(self):
        resp = _client(FakeLLM(replies=["Nothing found."])).post("/api/research/module", json=MODULE_BODY)
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["data"], {"raw_text": "Nothing found.", "parse_error": True})
        self.assertEqual(body["rawText"], "Nothing found.")
        self.assertFalse(body["succeeded"])

    def test_module_validation(self):
        client = _client(FakeLLM())
        self.assertEqual(client.post("/api/research/module", json={"moduleId": "weather"}).status_code, 422)
        bad = dict(MODULE_BODY, moduleId="weather")
        self.assertEqual(client.post("/api/research/module", json=bad).status_code, 422)

    def test_module_llm_disabled(self):
        resp = _client(FakeLLM(replies=[LLMDisabledError("LLM provider: insufficient credits.")])).post(
            "/api/research/module", json=MODULE_BODY
        )
        self.assertEqual(resp.status_code, 503)
        self.assertIn("insufficient credits", resp.json()["detail"])

    def test_module_unexpected_error(self):
        resp = _client(FakeLLM(replies=[RuntimeError("socket closed")])).post("/api/research/module", json=MODULE_BODY)
        self.assertEqual(resp.status_code, 500)
        self.assertIn("socket closed", resp.json()["detail"])

    def test_synthesize(self):
        text = '{"opportunity_score": 6, "executive_summary": "Moderate."}'
        body = {
            "input": MODULE_BODY["input"],
            "modules": [{"moduleId": "news", "title": "Latest Payment & Financial News", "status": "done", "data": {}}],
        }
        resp = _client(FakeLLM(replies=[text])).post("/api/research/synthesize", json=body)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["data"]["opportunity_score"], 6)
        self.assertEqual(resp.json()["rawText"], text)

    def test_domains(self):
        resp = _client(FakeLLM(replies=['{"domains": ["acme.com.mx", "acme.com"]}'])).post(
            "/api/research/domains", json={"companyName": "Acme Pay", "domain": "acme.com"}
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["domains"], ["acme.com.mx"])
        self.assertIn("rawText", resp.json())

    def test_report(self):
        def responder(purpose: str, prompt: str):
            if purpose == "synthesis":
                return '{"opportunity_score": 9, "talking_points": ["Hot"], "executive_summary": "Great."}'
            return '{"key_insight": "x"}'

        resp = _client(FakeLLM(responder=responder)).post("/api/research/report", json={"input": MODULE_BODY["input"]})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["opportunityScore"], 9)
        self.assertEqual(body["talkingPoints"], ["Hot"])
        self.assertEqual(len(body["modules"]), 8)
        for entry in body["modules"]:
            self.assertEqual(entry["rawText"], '{"key_insight": "x"}')
            self.assertTrue(entry["succeeded"])
        self.assertTrue(body["synthesisSucceeded"])

    def test_service_missing(self):
        settings = _settings()
        client = TestClient(create_app(settings))
        resp = client.post("/api/research/module", json=MODULE_BODY)
        self.assertEqual(resp.status_code, 503)

    def test_health(self):
        resp = _client(FakeLLM()).get("/health")
        self.assertEqual(resp.json(), {"status": "healthy", "llm": True})


class TestResearchAuth(unittest.TestCase):
    def test_paths(self):
        self.assertTrue(is_protected_path("/api/research/module"))
        self.assertFalse(is_protected_path("/api/research/auth"))
        self.assertFalse(is_protected_path("/health"))

    def test_hash_is_stable(self):
        self.assertEqual(password_hash("pw"), password_hash("pw"))
        self.assertNotEqual(password_hash("pw"), password_hash("pw2"))
        self.assertEqual(len(password_hash("pw")), 64)

    def test_gate_disabled_without_password(self):
        resp = _client(FakeLLM(replies=['{"a": 1}'])).post("/api/research/module", json=MODULE_BODY)
        self.assertEqual(resp.status_code, 200)

    def test_login_flow(self):
        client = _client(FakeLLM(replies=['{"a": 1}']), RESEARCH_PASSWORD="open-sesame")

        self.assertEqual(client.post("/api/research/module", json=MODULE_BODY).status_code, 401)
        self.assertEqual(client.post("/api/research/auth", json={"password": "wrong"}).status_code, 401)

        resp = client.post("/api/research/auth", json={"password": "open-sesame"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.cookies.get("research_auth"), password_hash("open-sesame"))
        self.assertEqual(client.post("/api/research/module", json=MODULE_BODY).status_code, 200)

        self.assertEqual(client.delete("/api/research/auth").status_code, 200)
        client.cookies.clear()
        self.assertEqual(client.post("/api/research/module", json=MODULE_BODY).status_code, 401)

    def test_forged_cookie(self):
        client = _client(FakeLLM(), RESEARCH_PASSWORD="open-sesame")
        client.cookies.set("research_auth", password_hash("guess"))
        self.assertEqual(client.post("/api/research/module", json=MODULE_BODY).status_code, 401)

    def test_login_without_password_configured(self):
        resp = _client(FakeLLM()).post("/api/research/auth", json={"password": "x"})
        self.assertEqual(resp.status_code, 500)

    def test_health_is_public(self):
        client = _client(FakeLLM(), RESEARCH_PASSWORD="open-sesame")
        self.assertEqual(client.get("/health").status_code, 200)


if __name__ == "__main__":
    unittest.main()
