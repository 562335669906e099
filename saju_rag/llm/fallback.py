"""
Model gateway: parameter clamping and a priority-ordered fallback chain.
"""

import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from saju_rag.config import settings
from saju_rag.errors import EmptyResponseError, ModelInvocationError, StageTimeoutError
from saju_rag.llm.models import BaseModelClient, JsonResult, ModelResult
from saju_rag.monitoring import MetricsCollector, get_metrics
from saju_rag.timeouts import with_timeout

logger = logging.getLogger(__name__)

# === Clamp ranges ===
MAX_TOKENS_RANGE = (1, 4096)
TEMPERATURE_RANGE = (0.0, 2.0)
TOP_P_RANGE = (0.0, 1.0)
PENALTY_RANGE = (-2.0, 2.0)
SEED_RANGE = (1, 9_999_999_999)


def _clamp(value, low, high):
    return max(low, min(high, value))


class GenerationParams(BaseModel):
    """Sampling parameters for one model invocation. Unset optionals are not sent."""

    max_tokens: Optional[int] = Field(default=None, description="Output token budget")
    temperature: Optional[float] = Field(default=None, description="Sampling temperature")
    stream: bool = Field(default=False, description="Stream the response as server-sent events")
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    seed: Optional[int] = None

    def clamped(
        self,
        max_tokens_ceiling: int = MAX_TOKENS_RANGE[1],
        temperature_ceiling: float = TEMPERATURE_RANGE[1],
    ) -> "GenerationParams":
        """
        Return a copy with every parameter forced into its valid range.

        ``max_tokens`` and ``temperature`` fall back to the configured
        defaults and are additionally capped by the given ceilings.
        """
        max_tokens = self.max_tokens if self.max_tokens is not None else settings.LLM_MAX_TOKENS
        temperature = self.temperature if self.temperature is not None else settings.LLM_TEMPERATURE
        return GenerationParams(
            max_tokens=_clamp(int(max_tokens), MAX_TOKENS_RANGE[0], min(MAX_TOKENS_RANGE[1], max_tokens_ceiling)),
            temperature=_clamp(float(temperature), TEMPERATURE_RANGE[0], min(TEMPERATURE_RANGE[1], temperature_ceiling)),
            stream=self.stream,
            top_p=None if self.top_p is None else _clamp(self.top_p, *TOP_P_RANGE),
            frequency_penalty=(
                None if self.frequency_penalty is None else _clamp(self.frequency_penalty, *PENALTY_RANGE)
            ),
            presence_penalty=(
                None if self.presence_penalty is None else _clamp(self.presence_penalty, *PENALTY_RANGE)
            ),
            seed=None if self.seed is None else _clamp(int(self.seed), *SEED_RANGE),
        )

    def to_payload(self) -> Dict:
        return self.model_dump(exclude_none=True)


class ModelGateway:
    """
    Dispatches chat requests to the primary model and walks the fallback
    list when it fails.
    """

    def __init__(
        self,
        client: BaseModelClient,
        primary_model: Optional[str] = None,
        fallback_models: Optional[List[str]] = None,
        timeout: Optional[float] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.client = client
        self.primary_model = primary_model or settings.CHAT_MODEL_NAME
        self.fallback_models = list(settings.FALLBACK_MODELS if fallback_models is None else fallback_models)
        self.timeout = settings.CHAT_TIMEOUT_SECONDS if timeout is None else timeout
        self.metrics = metrics or get_metrics()

    async def _attempt(
        self,
        model: str,
        messages: List[Dict[str, str]],
        params: GenerationParams,
        use_gateway: bool,
    ) -> ModelResult:
        payload = {"messages": messages, **params.to_payload()}
        result = await with_timeout(self.client.run(model, payload, use_gateway=use_gateway), self.timeout, "chat")
        if isinstance(result, JsonResult) and not result.payload:
            raise EmptyResponseError(f"{model} returned an empty response", model=model)
        return result

    async def invoke(
        self,
        messages: List[Dict[str, str]],
        params: Optional[GenerationParams] = None,
        model: Optional[str] = None,
        use_gateway: bool = False,
        enable_fallback: Optional[bool] = None,
    ) -> ModelResult:
        """
        Invoke a chat model with fallback.

        Args:
            messages: Ordered role/content pairs
            params: Sampling parameters (clamped before dispatch)
            model: Primary model override
            use_gateway: Route through AI Gateway when configured
            enable_fallback: Walk the fallback list on failure (default from settings)

        Returns:
            JsonResult or StreamResult with routing metadata set

        Raises:
            ModelInvocationError / StageTimeoutError: the primary model's error
                when every attempt failed
        """
        primary = model or self.primary_model
        params = params or GenerationParams()
        if enable_fallback is None:
            enable_fallback = settings.ENABLE_FALLBACK

        try:
            return await self._attempt(primary, messages, params.clamped(), use_gateway)
        except (ModelInvocationError, StageTimeoutError) as e:
            primary_error = e
            self.metrics.increment("model_failures")
            logger.warning(f"⚠️ Primary model {primary} failed: {e}")

        if not enable_fallback:
            raise primary_error

        conservative = params.clamped(
            max_tokens_ceiling=settings.FALLBACK_MAX_TOKENS,
            temperature_ceiling=settings.FALLBACK_TEMPERATURE,
        )
        for candidate in self.fallback_models:
            if candidate == primary:
                continue
            try:
                result = await self._attempt(candidate, messages, conservative, use_gateway)
            except (ModelInvocationError, StageTimeoutError) as e:
                self.metrics.increment("model_failures")
                logger.warning(f"⚠️ Fallback model {candidate} failed: {e}")
                continue
            result.fallback_used = True
            self.metrics.increment("fallbacks_used")
            logger.info(f"🔄 Fallback model {candidate} answered for {primary}")
            return result

        logger.error(f"❌ All models failed. Surfacing primary error: {primary_error}")
        raise primary_error
