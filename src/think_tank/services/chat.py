"""Inbound chat request handling: validation, orchestration and error mapping."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from think_tank.billing.calculator import Budget, check_budget
from think_tank.config import BudgetConfig, DefaultsConfig
from think_tank.core.errors import (
    ProviderError,
    ProviderTimeoutError,
    RequestValidationError,
    StateError,
    StreamCancelledError,
    ThinkTankError,
    UnsupportedProviderError,
)
from think_tank.core.manager import ProviderManager, ResponseResult, StreamSink
from think_tank.core.models import ChatMessage, Persona
from think_tank.log import get_logger

logger = get_logger(__name__)


class SpendSource(Protocol):
    async def total_spend(self, user_id: str, since: datetime) -> float: ...


class InboundMessage(BaseModel):
    role: str
    content: str

    @field_validator("role")
    @classmethod
    def _known_role(cls, value: str) -> str:
        if value not in ("system", "user", "assistant"):
            raise ValueError(f"unknown role: {value}")
        return value


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider: str = Field(min_length=1)
    model: str = Field(min_length=1)
    messages: list[InboundMessage] = Field(min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    persona_name: str = Field(alias="personaName", min_length=1)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, alias="maxTokens", gt=0)
    persona_id: Optional[str] = Field(default=None, alias="personaId")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    stream: bool = False
    use_structured_output: Optional[bool] = Field(default=None, alias="useStructuredOutput")


@dataclass(frozen=True, slots=True)
class HandlerResponse:
    status: int
    body: dict[str, Any]


def status_for(error: ThinkTankError) -> int:
    if isinstance(error, RequestValidationError):
        return 400
    if isinstance(error, UnsupportedProviderError):
        return 400
    if isinstance(error, StateError):
        return 409
    if isinstance(error, ProviderTimeoutError):
        return 504
    if isinstance(error, ProviderError):
        return 502
    if isinstance(error, StreamCancelledError):
        return 499
    return 500


def parse_request(payload: dict[str, Any]) -> ChatRequest:
    try:
        return ChatRequest.model_validate(payload)
    except ValidationError as e:
        errors = e.errors(include_url=False)
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in errors})
        raise RequestValidationError(f"Invalid request fields: {', '.join(fields)}", errors) from e


class ChatRequestHandler:
    """Turns an inbound payload into a persona response.

    Only this class knows about status codes; everything below it raises.
    """

    def __init__(
        self,
        manager: ProviderManager,
        defaults: DefaultsConfig | None = None,
        budget: BudgetConfig | None = None,
        spend: SpendSource | None = None,
    ):
        self._manager = manager
        self._defaults = defaults or DefaultsConfig()
        self._budget = budget
        self._spend = spend

    async def handle(self, payload: dict[str, Any], stream_sink: StreamSink | None = None) -> HandlerResponse:
        try:
            request = parse_request(payload)
            persona = self._persona(request)
            history = [ChatMessage.from_dict(m.model_dump()) for m in request.messages]
            await self._check_budget(request, persona, history)
            result = await self._manager.respond(
                persona,
                history,
                stream_sink if request.stream else None,
                user_id=request.user_id,
                conversation_id=request.conversation_id,
                structured=request.use_structured_output,
            )
        except ThinkTankError as e:
            return self._error_response(e, payload)
        return HandlerResponse(200, self._body(request, result))

    def _persona(self, request: ChatRequest) -> Persona:
        return Persona(
            id=request.persona_id or request.persona_name,
            name=request.persona_name,
            provider=request.provider,
            model=request.model,
            temperature=request.temperature if request.temperature is not None else self._defaults.temperature,
            max_tokens=request.max_tokens or self._defaults.max_tokens,
        )

    async def _check_budget(self, request: ChatRequest, persona: Persona, history: list[ChatMessage]) -> None:
        if self._budget is None or self._spend is None or not self._budget.auto_stop:
            return
        now = datetime.now(timezone.utc)
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        budget = Budget(
            daily_limit=self._budget.daily_limit,
            monthly_limit=self._budget.monthly_limit,
            current_daily_spend=await self._spend.total_spend(request.user_id, day_start),
            current_monthly_spend=await self._spend.total_spend(request.user_id, day_start.replace(day=1)),
            auto_stop=self._budget.auto_stop,
        )
        estimate = self._manager.calculator.estimate_from_messages(history, persona.provider, persona.model)
        verdict = check_budget(budget, estimate)
        if not verdict.allowed:
            logger.warning("budget_exceeded", user_id=request.user_id, estimate=estimate, reason=verdict.reason)
            raise RequestValidationError(verdict.reason or "Budget exceeded", [{"field": "userId", "message": "budget"}])

    @staticmethod
    def _body(request: ChatRequest, result: ResponseResult) -> dict[str, Any]:
        body: dict[str, Any] = {
            "structuredResponse": result.structured.to_dict(),
            "content": result.content,
            "usage": result.usage.to_dict(),
            "cost": result.cost,
            "provider": result.provider,
            "model": result.model,
            "personaName": request.persona_name,
        }
        if request.persona_id:
            body["personaId"] = request.persona_id
        if result.usage_estimated:
            body["usageEstimated"] = True
        return body

    @staticmethod
    def _error_response(error: ThinkTankError, payload: dict[str, Any]) -> HandlerResponse:
        status = status_for(error)
        context = {"provider": payload.get("provider"), "model": payload.get("model")}
        if isinstance(error, RequestValidationError):
            logger.info("request_rejected", error=str(error), **context)
            return HandlerResponse(status, {"error": str(error), "details": error.errors})
        if isinstance(error, ProviderError):
            logger.error(
                "response_failed",
                kind=type(error).__name__,
                status_code=error.status_code,
                **context,
            )
            return HandlerResponse(status, {"error": "response failed"})
        if isinstance(error, StreamCancelledError):
            return HandlerResponse(status, {"error": "stream cancelled", "chunksDelivered": error.chunks_delivered})
        logger.info("request_refused", error=str(error), **context)
        return HandlerResponse(status, {"error": str(error)})
