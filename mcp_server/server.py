from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

import requests
from mcp.server.fastmcp import FastMCP
from pydantic import BaseModel

BACKEND_BASE_URL = os.getenv("BACKEND_BASE_URL", "http://localhost:8000").rstrip("/")
BACKEND_API_BASE = os.getenv("BACKEND_API_BASE", "/api").rstrip("/")
REQUEST_TIMEOUT = float(os.getenv("MCP_BACKEND_TIMEOUT", "60"))
DEBUG_MODE = os.getenv("MCP_DEBUG", "0").strip() in ("1", "true", "True", "yes")
LOG_REQUESTS = os.getenv("MCP_LOG_REQUESTS", "0").strip() in ("1", "true", "True", "yes")

logger = logging.getLogger(__name__)

mcp = FastMCP("event-assistant")


def _log_tool_call(tool_name: str, input_data: Dict[str, Any], output_data: Dict[str, Any]) -> None:
  if not DEBUG_MODE:
    return
  logger.info("tool=%s\ninput=%s\noutput=%s", tool_name,
              json.dumps(input_data, indent=2, ensure_ascii=False),
              json.dumps(output_data, indent=2, ensure_ascii=False))


class PriorTurnInput(BaseModel):
  prompt: str
  response: str = ""


class RequestLoggerMiddleware:
  def __init__(self, app: Any):
    self.app = app

  async def __call__(self, scope: Dict[str, Any], receive: Any, send: Any) -> None:
    if scope.get("type") != "http":
      await self.app(scope, receive, send)
      return

    headers = self._decode_headers(scope.get("headers") or [])
    self._log_request(scope.get("method", ""), scope.get("path", ""), headers)
    await self.app(scope, receive, send)

  def _decode_headers(self, raw_headers: List[Tuple[bytes, bytes]]) -> Dict[str, str]:
    return {
        key.decode("latin-1").lower(): value.decode("latin-1")
        for key, value in raw_headers
    }

  def _log_request(self, method: str, path: str, headers: Dict[str, str]) -> None:
    safe_headers = dict(headers)
    for secret in ("authorization", "cookie"):
      if secret in safe_headers:
        safe_headers[secret] = "(redacted)"
    logger.info("MCP HTTP %s %s headers=%s", method, path,
                json.dumps(safe_headers, ensure_ascii=False))


def _api_path(path: str) -> str:
  return f"{BACKEND_API_BASE}/{path.lstrip('/')}"


def _request(method: str,
             path: str,
             params: Optional[Dict[str, Any]] = None,
             payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
  url = f"{BACKEND_BASE_URL}{path}"
  try:
    resp = requests.request(method,
                            url,
                            params=params,
                            json=payload,
                            timeout=REQUEST_TIMEOUT)
  except requests.RequestException as exc:
    return {
        "ok": False,
        "code": "request_failed",
        "message": f"Backend request failed: {exc}",
    }

  try:
    data = resp.json()
  except ValueError:
    data = {"raw": resp.text}

  if resp.status_code >= 400:
    return {
        "ok": False,
        "code": "backend_error",
        "status": resp.status_code,
        "error": data,
    }

  return {"ok": True, "data": data}


def _clean_params(params: Dict[str, Any]) -> Dict[str, Any]:
  return {k: v for k, v in params.items() if v is not None and v != ""}


@mcp.tool(name="assistant.process_prompt")
def assistant_process_prompt(
    prompt: str,
    prior_context: Optional[List[PriorTurnInput]] = None,
    timezone: Optional[str] = None,
) -> Dict[str, Any]:
  """Run a natural-language event request (create/update/list events and venues)."""
  payload: Dict[str, Any] = {
      "prompt": prompt,
      "prior_context": [turn.model_dump() for turn in prior_context or []],
  }
  if timezone:
    payload["timezone"] = timezone
  result = _request("POST", _api_path("/assistant/prompt"), payload=payload)
  _log_tool_call("assistant.process_prompt", payload, result)
  return result


@mcp.tool(name="events.list")
def events_list(
    title_contains: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    venue_name: Optional[str] = None,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
  """List events; dates are inclusive YYYY-MM-DD. Every match unless limit is given."""
  params = _clean_params({
      "title_contains": title_contains,
      "start_date": start_date,
      "end_date": end_date,
      "venue_name": venue_name,
      "limit": limit,
  })
  result = _request("GET", _api_path("/events"), params=params)
  _log_tool_call("events.list", params, result)
  return result


@mcp.tool(name="venues.list")
def venues_list(name_contains: Optional[str] = None) -> Dict[str, Any]:
  params = _clean_params({"name_contains": name_contains})
  result = _request("GET", _api_path("/venues"), params=params)
  _log_tool_call("venues.list", params, result)
  return result


if __name__ == "__main__":
  import uvicorn

  logging.basicConfig(level=logging.DEBUG if DEBUG_MODE else logging.INFO)
  host = os.getenv("MCP_HOST", "0.0.0.0")
  port = int(os.getenv("MCP_PORT", "8001"))
  app = mcp.streamable_http_app()
  if LOG_REQUESTS:
    app = RequestLoggerMiddleware(app)
  uvicorn.run(app, host=host, port=port)
