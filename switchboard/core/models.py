"""Data model shared by the orchestration components."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal, Union

from switchboard.core.error_types import ErrorKind
from switchboard.core.providers import Provider

MAX_HEALTH_SCORE = 100


@dataclass
class Credential:
    """One API key belonging to one provider.

    Owned by KeyPool; only mutated through KeyPool operations.
    """

    id: str
    provider: Provider
    secret: str
    label: str
    is_active: bool = True
    usage_count: int = 0
    last_used_at: float | None = None
    created_at: float = field(default_factory=time.time)
    error_count: int = 0
    consecutive_errors: int = 0
    last_error_at: float | None = None
    health_score: int = MAX_HEALTH_SCORE

    @property
    def masked_secret(self) -> str:
        if len(self.secret) <= 8:
            return "****"
        return f"{self.secret[:4]}...{self.secret[-4:]}"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["provider"] = self.provider.value
        return data

    def to_public_dict(self) -> dict[str, Any]:
        """Serializable view without the raw secret."""
        data = self.to_dict()
        data["secret"] = self.masked_secret
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Credential:
        return cls(
            id=str(data["id"]),
            provider=Provider.parse(data["provider"]),
            secret=str(data["secret"]),
            label=str(data.get("label") or f"{data['provider']} key"),
            is_active=bool(data.get("is_active", True)),
            usage_count=int(data.get("usage_count", 0)),
            last_used_at=data.get("last_used_at"),
            created_at=float(data.get("created_at") or time.time()),
            error_count=int(data.get("error_count", 0)),
            consecutive_errors=int(data.get("consecutive_errors", 0)),
            last_error_at=data.get("last_error_at"),
            health_score=int(data.get("health_score", MAX_HEALTH_SCORE)),
        )


@dataclass(frozen=True)
class ChatMessage:
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class RequestSpec:
    """Immutable description of one chat-completion call.

    Either ``prompt`` or ``messages`` must be given. ``provider`` and
    ``model`` default to the active provider and its default model.
    """

    prompt: str | None = None
    messages: tuple[ChatMessage, ...] = ()
    system_prompt: str | None = None
    provider: Provider | None = None
    model: str | None = None
    temperature: float = 0.7
    max_tokens: int = 2000
    cache_key_material: str | None = None
    tenant_id: str | None = None
    user_id: str | None = None
    endpoint: str = "complete"
    use_cache: bool = True

    def __post_init__(self) -> None:
        if not self.prompt and not self.messages:
            raise ValueError("RequestSpec requires a prompt or messages")
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be positive")

    def to_messages(self) -> list[dict[str, str]]:
        """Render the conversation in chat-completions message form."""
        rendered: list[dict[str, str]] = []
        if self.system_prompt:
            rendered.append({"role": "system", "content": self.system_prompt})
        rendered.extend({"role": m.role, "content": m.content} for m in self.messages)
        if self.prompt:
            rendered.append({"role": "user", "content": self.prompt})
        return rendered


@dataclass(frozen=True)
class EmbeddingSpec:
    """Immutable description of one embedding call."""

    text: str
    provider: Provider | None = None
    model: str | None = None
    tenant_id: str | None = None
    user_id: str | None = None
    endpoint: str = "embed"
    use_cache: bool = True


@dataclass(frozen=True)
class ChatRequest:
    """What a provider client receives for one chat attempt."""

    provider: Provider
    model: str
    messages: tuple[dict[str, str], ...]
    temperature: float
    max_tokens: int


@dataclass(frozen=True)
class ChatCompletion:
    kind: Literal["chat"] = field(default="chat", init=False)
    text: str
    provider: Provider
    model: str
    tokens_in: int = 0
    tokens_out: int = 0
    cached: bool = False
    attempts: int = 1

    @property
    def total_tokens(self) -> int:
        return self.tokens_in + self.tokens_out


@dataclass(frozen=True)
class Embedding:
    kind: Literal["embedding"] = field(default="embedding", init=False)
    vector: tuple[float, ...]
    provider: Provider
    model: str
    tokens_in: int = 0
    cached: bool = False
    attempts: int = 1

    @property
    def total_tokens(self) -> int:
        return self.tokens_in


Result = Union[ChatCompletion, Embedding]


class Outcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AttemptRecord:
    """One logged outcome of one provider invocation (or cache hit)."""

    endpoint: str
    provider: Provider
    outcome: Outcome
    timestamp_start: float
    latency_ms: float = 0.0
    user_id: str | None = None
    model: str | None = None
    error_kind: ErrorKind | None = None
    tokens_in: int = 0
    tokens_out: int = 0
    cost_estimate: float = 0.0
    cached: bool = False
    request_id: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def total_tokens(self) -> int:
        return self.tokens_in + self.tokens_out


@dataclass(frozen=True)
class Alert:
    type: str
    message: str
    timestamp: float
    severity: Literal["warning", "critical"] = "warning"
    provider: Provider | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["provider"] = self.provider.value if self.provider else None
        return data
