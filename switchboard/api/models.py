"""Request bodies for the HTTP surface."""

from typing import Literal

from pydantic import BaseModel, Field, model_validator

from switchboard.core.models import ChatMessage, EmbeddingSpec, RequestSpec
from switchboard.core.providers import Provider


class MessageIn(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class CompleteRequest(BaseModel):
    prompt: str | None = None
    messages: list[MessageIn] = Field(default_factory=list)
    system_prompt: str | None = None
    provider: str | None = None
    model: str | None = None
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(2000, gt=0)
    cache_key_material: str | None = None
    tenant_id: str | None = None
    user_id: str | None = None
    endpoint: str = "complete"
    use_cache: bool = True

    @model_validator(mode="after")
    def _require_prompt_or_messages(self) -> "CompleteRequest":
        if not self.prompt and not self.messages:
            raise ValueError("Either 'prompt' or 'messages' is required")
        return self

    def to_spec(self) -> RequestSpec:
        return RequestSpec(
            prompt=self.prompt,
            messages=tuple(ChatMessage(role=m.role, content=m.content) for m in self.messages),
            system_prompt=self.system_prompt,
            provider=Provider.parse(self.provider) if self.provider else None,
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            cache_key_material=self.cache_key_material,
            tenant_id=self.tenant_id,
            user_id=self.user_id,
            endpoint=self.endpoint,
            use_cache=self.use_cache,
        )


class EmbeddingRequest(BaseModel):
    text: str = Field(min_length=1)
    provider: str | None = None
    model: str | None = None
    tenant_id: str | None = None
    user_id: str | None = None
    use_cache: bool = True

    def to_spec(self) -> EmbeddingSpec:
        return EmbeddingSpec(
            text=self.text,
            provider=Provider.parse(self.provider) if self.provider else None,
            model=self.model,
            tenant_id=self.tenant_id,
            user_id=self.user_id,
            use_cache=self.use_cache,
        )


class AddKeyRequest(BaseModel):
    provider: str
    secret: str = Field(min_length=1)
    label: str | None = None


class TestConnectionRequest(BaseModel):
    api_key: str | None = None
