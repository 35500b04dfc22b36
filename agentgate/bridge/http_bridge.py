"""
HTTP bridge to the agent runtime sidecar.

The sidecar hosts the runtime, accepts a submission on ``POST {base}/query`` and
streams runtime messages back as SSE ``data:`` lines.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator
from urllib.parse import urlparse, urlunparse

import httpx

from agentgate.bridge.interface import AgentBridge, BridgeSubmission, CancellationToken
from agentgate.config.settings import Settings
from agentgate.core.errors import BridgeCancelledError, BridgeError
from agentgate.util.logger import get_logger


logger = get_logger("http_bridge")


def _normalize_base(raw_base: str) -> str:
    candidate = raw_base.strip()
    parsed = urlparse(candidate)
    if parsed.scheme not in {"http", "https"}:
        raise ValueError("invalid_bridge_scheme")
    if not parsed.netloc:
        raise ValueError("invalid_bridge_host")
    return urlunparse((parsed.scheme, parsed.netloc, parsed.path.rstrip("/"), "", "", ""))


def _extract_sse_data_payload(line: str) -> str | None:
    if not line:
        return None
    stripped = line.strip()
    if not stripped.startswith("data:"):
        return None
    return stripped[5:].strip()


def _safe_error_detail(body: bytes) -> str:
    text = body.decode("utf-8", errors="replace")
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return text[:600]
    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, str):
            return error[:600]
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"][:600]
    return json.dumps(parsed, ensure_ascii=False)[:600]


class HttpAgentBridge(AgentBridge):
    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self.base_url = _normalize_base(settings.bridge_base_url)
        self.settings = settings
        self._client = client
        self._client_lock = asyncio.Lock()

    def _limits(self) -> httpx.Limits:
        return httpx.Limits(
            max_connections=max(1, int(self.settings.bridge_max_connections)),
            max_keepalive_connections=max(1, int(self.settings.bridge_max_keepalive_connections)),
        )

    def _timeout(self) -> httpx.Timeout:
        timeout = float(self.settings.bridge_timeout_seconds)
        return httpx.Timeout(connect=min(timeout, 30.0), read=timeout, write=timeout, pool=timeout)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(timeout=self._timeout(), limits=self._limits())
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def stream(self, submission: BridgeSubmission, token: CancellationToken) -> AsyncIterator[dict[str, Any]]:
        url = f"{self.base_url}/query"
        body = submission.model_dump(mode="json")
        logger.debug(
            "bridge submit url=%s session=%s resume=%s stream=%s",
            url,
            submission.session_id,
            bool(submission.resume or submission.transcript),
            submission.stream,
        )
        client = await self._get_client()
        try:
            async with client.stream("POST", url, json=body, headers={"Accept": "text/event-stream"}) as resp:
                if resp.status_code >= 400:
                    detail = _safe_error_detail(await resp.aread())
                    raise BridgeError(f"bridge_http_error:{resp.status_code}:{detail}")
                async for line in resp.aiter_lines():
                    if token.cancelled:
                        raise BridgeCancelledError("cancelled by consumer")
                    data = _extract_sse_data_payload(line)
                    if data is None or not data:
                        continue
                    if data == "[DONE]":
                        return
                    try:
                        message = json.loads(data)
                    except json.JSONDecodeError:
                        logger.warning("bridge sent malformed event, skipped: %s", data[:200])
                        continue
                    if isinstance(message, dict):
                        yield message
        except httpx.HTTPError as exc:
            detail = (str(exc) or "").strip() or "connection_failed_or_timeout"
            logger.warning("bridge http_error url=%s error=%s", url, detail)
            raise BridgeError(f"bridge_unreachable: {detail}") from exc
