#!/usr/bin/env python3
from __future__ import annotations

import importlib
import json
import os
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import httpx
from fastapi.testclient import TestClient


@dataclass
class Scenario:
  name: str
  message: str
  reply: Callable[[httpx.Request], httpx.Response]
  expected_state: str
  expected_symptoms: int


def scripted(payload: dict[str, Any] | str) -> Callable[[httpx.Request], httpx.Response]:
  def _handler(request: httpx.Request) -> httpx.Response:
    if isinstance(payload, str):
      return httpx.Response(200, json={"content": payload})
    return httpx.Response(200, json={"content": json.dumps(payload)})

  return _handler


def refused(request: httpx.Request) -> httpx.Response:
  raise httpx.ConnectError("[Errno 111] Connection refused", request=request)


def run() -> int:
  repo_root = Path(__file__).resolve().parents[1]
  backend_dir = repo_root / "backend"
  if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

  scratch = tempfile.mkdtemp(prefix="easygp-smoke-")
  os.environ["EASYGP_DB_PATH"] = str(Path(scratch) / "smoke.sqlite")
  os.environ.setdefault("EASYGP_LLM_BASE_URL", "http://llm.smoke")

  backend_module = importlib.import_module("main")
  backend_module = importlib.reload(backend_module)
  from consult_pipeline import CompletionClient

  scenarios = [
    Scenario(
      name="Structured Reply With Symptoms",
      message="I've had a sore throat and a mild fever for two days.",
      reply=scripted(
        {
          "greeting": "Hi there.",
          "response": "That sounds like a viral throat infection. Rest and fluids help.",
          "follow_up": "Any trouble swallowing?",
          "extracted_symptoms": [
            {"name": "sore throat", "present": True, "confidence": 0.92, "duration": "2 days"},
            {"name": "fever", "present": True, "confidence": 0.8, "severity": "mild"},
          ],
        }
      ),
      expected_state="succeeded",
      expected_symptoms=2,
    ),
    Scenario(
      name="Truncated JSON Reply",
      message="No trouble swallowing, but my ears hurt.",
      reply=scripted(
        '{"response": "Ear pain often comes with throat infections.", '
        '"extracted_symptoms": [{"name": "ear pain", "present": true, "confidence": 0.7}],'
      ),
      expected_state="succeeded",
      expected_symptoms=1,
    ),
    Scenario(
      name="Endpoint Down",
      message="Should I see a doctor?",
      reply=refused,
      expected_state="failed",
      expected_symptoms=0,
    ),
  ]

  results: list[dict[str, Any]] = []
  current: dict[str, Callable[[httpx.Request], httpx.Response]] = {}

  def dispatch(request: httpx.Request) -> httpx.Response:
    return current["reply"](request)

  backend_module.container.pipeline.client = CompletionClient(
    backend_module.container.settings.base_url,
    transport=httpx.MockTransport(dispatch),
  )

  with TestClient(backend_module.app) as client:
    episode = client.post("/episodes", json={"title": "Smoke consultation"}).json()
    episode_id = episode["id"]

    for scenario in scenarios:
      current["reply"] = scenario.reply
      response = client.post(f"/episodes/{episode_id}/messages", json={"content": scenario.message})
      scenario_result: dict[str, Any] = {
        "name": scenario.name,
        "status_code": response.status_code,
        "expected_state": scenario.expected_state,
      }
      if response.status_code != 200:
        scenario_result["pass"] = False
        scenario_result["error"] = f"send returned {response.status_code}"
        results.append(scenario_result)
        continue

      body = response.json()
      scenario_result["state"] = body.get("state")
      scenario_result["reply_preview"] = str(body.get("response", {}).get("response", ""))[:240]
      scenario_result["symptom_ids"] = body.get("symptom_ids", [])
      scenario_result["pass"] = (
        body.get("state") == scenario.expected_state
        and len(body.get("symptom_ids", [])) == scenario.expected_symptoms
      )
      if not scenario_result["pass"]:
        scenario_result["error"] = "Unexpected state or symptom count."
      results.append(scenario_result)

    messages = client.get(f"/episodes/{episode_id}/messages").json()["items"]
    symptoms = client.get(f"/episodes/{episode_id}/symptoms").json()["items"]

  roles = [message["role"] for message in messages]
  paired = roles == ["user", "assistant"] * len(scenarios) and all(
    assistant["timestamp"] > user["timestamp"] for user, assistant in zip(messages[::2], messages[1::2])
  )
  passed = sum(1 for item in results if item.get("pass"))
  failed = len(results) - passed + (0 if paired else 1)
  timestamp = datetime.now(timezone.utc).isoformat()

  report_lines = [
    "# Consultation Smoke Report",
    "",
    f"- Timestamp (UTC): `{timestamp}`",
    f"- Endpoint: `{backend_module.container.settings.base_url}` (scripted)",
    f"- Total scenarios: `{len(results)}`",
    f"- Passed: `{passed}`",
    f"- Turn pairing holds: `{paired}`",
    f"- Persisted symptoms: `{', '.join(item['name'] for item in symptoms)}`",
    "",
    "## Scenario Results",
    "",
  ]
  for item in results:
    status = "PASS" if item.get("pass") else "FAIL"
    report_lines.append(f"### {status} - {item['name']}")
    report_lines.append(f"- Expected state: `{item.get('expected_state')}`")
    report_lines.append(f"- Actual state: `{item.get('state')}`")
    report_lines.append(f"- Status code: `{item.get('status_code')}`")
    if item.get("error"):
      report_lines.append(f"- Error: `{item['error']}`")
    preview = item.get("reply_preview") or ""
    if preview:
      report_lines.append(f"- Reply preview: `{preview}`")
    report_lines.append("")

  report_path = repo_root / "CONSULT_SMOKE_REPORT.md"
  report_path.write_text("\n".join(report_lines), encoding="utf-8")
  print(f"Wrote report: {report_path}")
  print(f"Passed {passed}/{len(results)} scenarios.")

  return 0 if failed == 0 else 1


if __name__ == "__main__":
  raise SystemExit(run())
