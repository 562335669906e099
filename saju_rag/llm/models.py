"""
Hosted model client for Cloudflare Workers AI.

Results are a tagged union so callers branch on ``kind`` instead of
sniffing runtime types:

    JsonResult   kind == "json"    parsed ``result`` object
    StreamResult kind == "stream"  raw byte stream, passed through untouched
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional, Union

import httpx

from saju_rag.config import settings
from saju_rag.errors import ModelInvocationError

logger = logging.getLogger(__name__)


@dataclass
class JsonResult:
    """A complete (non-streaming) model result."""
    payload: Optional[Dict[str, Any]]
    model_used: str
    gateway_enabled: bool = False
    fallback_used: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    kind: str = "json"

    def __post_init__(self):
        # models may answer with bare text instead of a result object
        if self.payload is None or isinstance(self.payload, dict):
            return
        if isinstance(self.payload, str):
            self.payload = {"response": self.payload} if self.payload else None
        else:
            self.payload = {"response": json.dumps(self.payload, ensure_ascii=False)}

    @property
    def answer(self) -> Optional[str]:
        if isinstance(self.payload, dict):
            return self.payload.get("response")
        return None

    def envelope(self) -> Dict[str, Any]:
        """Raw result plus uniform routing metadata."""
        body = dict(self.payload or {})
        body.update(
            {
                "model_used": self.model_used,
                "fallback_used": self.fallback_used,
                "gateway_enabled": self.gateway_enabled,
                "timestamp": self.timestamp,
            }
        )
        return body


@dataclass
class StreamResult:
    """A streaming model result. Metadata travels in headers only."""
    body: AsyncIterator[bytes]
    model_used: str
    gateway_enabled: bool = False
    fallback_used: bool = False
    media_type: str = "text/event-stream"
    kind: str = "stream"

    def headers(self) -> Dict[str, str]:
        return {
            "X-AI-Model": self.model_used,
            "X-Gateway-Enabled": str(self.gateway_enabled).lower(),
            "X-Fallback-Used": str(self.fallback_used).lower(),
            "X-Stream-Response": "true",
        }


ModelResult = Union[JsonResult, StreamResult]


class BaseModelClient(ABC):
    """Abstract base class for hosted model providers."""

    @abstractmethod
    async def run(
        self,
        model: str,
        payload: Dict[str, Any],
        use_gateway: bool = False,
    ) -> ModelResult:
        """Run ``model`` with ``payload``."""
        pass

    @property
    def gateway_available(self) -> bool:
        return False


class WorkersAIClient(BaseModelClient):
    """Cloudflare Workers AI REST client, optionally routed through AI Gateway."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        account_id: Optional[str] = None,
        api_token: Optional[str] = None,
        base_url: Optional[str] = None,
        gateway_url: Optional[str] = None,
    ):
        self.client = client
        self.account_id = account_id or settings.CLOUDFLARE_ACCOUNT_ID
        self.api_token = api_token or settings.CLOUDFLARE_API_TOKEN
        self.base_url = base_url or settings.workers_ai_base
        self.gateway_url = gateway_url if gateway_url is not None else settings.gateway_base

    @property
    def gateway_available(self) -> bool:
        return bool(self.gateway_url)

    def _url(self, model: str, use_gateway: bool) -> str:
        if use_gateway and self.gateway_url:
            return f"{self.gateway_url}/{model}"
        return f"{self.base_url}/{model}"

    async def run(
        self,
        model: str,
        payload: Dict[str, Any],
        use_gateway: bool = False,
    ) -> ModelResult:
        """
        Run a Workers AI model.

        Args:
            model: Model identifier, e.g. ``@cf/meta/llama-3.1-8b-instruct``
            payload: Model input (messages/text plus generation parameters)
            use_gateway: Route through AI Gateway when one is configured

        Returns:
            StreamResult when ``payload["stream"]`` is set, else JsonResult

        Raises:
            ModelInvocationError: transport failure, HTTP error or
                unsuccessful/malformed envelope
        """
        gateway_enabled = bool(use_gateway and self.gateway_url)
        stream = bool(payload.get("stream"))
        request = self.client.build_request(
            "POST",
            self._url(model, use_gateway),
            headers={"Authorization": f"Bearer {self.api_token}"},
            json=payload,
        )

        try:
            response = await self.client.send(request, stream=stream)
        except httpx.HTTPError as e:
            raise ModelInvocationError(f"{model} request failed: {e}", model=model) from e

        if response.status_code >= 400:
            body = await response.aread()
            await response.aclose()
            raise ModelInvocationError(
                f"{model} returned HTTP {response.status_code}: {body[:200]!r}", model=model
            )

        if stream:
            return StreamResult(
                body=_passthrough(response),
                model_used=model,
                gateway_enabled=gateway_enabled,
                media_type=response.headers.get("content-type", "text/event-stream"),
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ModelInvocationError(f"{model} returned malformed JSON", model=model) from e

        if isinstance(data, dict) and data.get("success") is False:
            raise ModelInvocationError(f"{model} failed: {data.get('errors')}", model=model)

        result = data.get("result") if isinstance(data, dict) and "result" in data else data
        return JsonResult(payload=result, model_used=model, gateway_enabled=gateway_enabled)


async def _passthrough(response: httpx.Response) -> AsyncIterator[bytes]:
    """Yield the upstream body chunk by chunk, closing the response at the end."""
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    finally:
        await response.aclose()
