"""
LiteLLM Payload Models - typed views over the upstream proxy's JSON.

LiteLLM's responses drift between versions (nulls for numbers, wrapped vs bare
lists, nested user_info). These models absorb that drift at the boundary so the
rest of the service only sees domain dataclasses.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from llmreq.models.domain import GeneratedKey, RemoteKey, RemoteUser


class LiteLLMKeyPayload(BaseModel):
    """One key object from GET /key/list."""

    model_config = ConfigDict(extra="ignore")

    key: str | None = None
    token: str | None = None
    key_alias: str | None = None
    key_name: str | None = None
    spend: float = 0.0
    expires: str | None = None
    user_id: str | None = None
    team_id: str | None = None
    models: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] | None = None

    @field_validator("spend", mode="before")
    @classmethod
    def null_spend_is_zero(cls, value: object) -> object:
        return 0.0 if value is None else value

    @field_validator("models", mode="before")
    @classmethod
    def null_models_is_empty(cls, value: object) -> object:
        return [] if value is None else value

    @field_validator("expires", mode="before")
    @classmethod
    def stringify_expires(cls, value: object) -> object:
        # Some LiteLLM builds send epoch numbers; keep them for the parser to reject
        if value is None or isinstance(value, str):
            return value
        return str(value)

    def to_domain(self) -> RemoteKey:
        remote_key_id = self.key or self.token or ""
        return RemoteKey(
            remote_key_id=remote_key_id,
            mask=self.key_name or remote_key_id,
            alias=self.key_alias or "",
            owner_user_id=self.user_id,
            spend=self.spend,
            expires_raw=self.expires,
        )


class LiteLLMKeyListPayload(BaseModel):
    """Wrapped form of GET /key/list: {"keys": [...]}."""

    model_config = ConfigDict(extra="ignore")

    keys: list[LiteLLMKeyPayload]


class LiteLLMUserPayload(BaseModel):
    """GET /user/info/{user_id} response."""

    model_config = ConfigDict(extra="ignore")

    user_id: str
    user_email: str | None = None
    max_budget: float | None = None
    spend: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def unwrap_user_info(cls, data: Any) -> Any:
        """Newer LiteLLM versions nest the user under "user_info"."""
        if isinstance(data, dict) and isinstance(data.get("user_info"), dict):
            merged = dict(data["user_info"])
            merged.setdefault("user_id", data.get("user_id"))
            return merged
        return data

    @field_validator("spend", mode="before")
    @classmethod
    def null_spend_is_zero(cls, value: object) -> object:
        return 0.0 if value is None else value

    def to_domain(self) -> RemoteUser:
        return RemoteUser(
            user_id=self.user_id,
            user_email=self.user_email,
            max_budget=self.max_budget,
            spend=self.spend,
        )


class LiteLLMGenerateKeyPayload(BaseModel):
    """POST /key/generate response."""

    model_config = ConfigDict(extra="ignore")

    key: str | None = None
    token: str | None = None
    spend: float | None = None
    max_budget: float | None = None
    user_id: str | None = None
    key_alias: str | None = None
    key_name: str | None = None
    expires: str | None = None

    @field_validator("expires", mode="before")
    @classmethod
    def stringify_expires(cls, value: object) -> object:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @property
    def secret(self) -> str:
        """LiteLLM returns the plaintext under "key"; some versions use "token"."""
        return self.key or self.token or ""

    def to_domain(self) -> GeneratedKey:
        return GeneratedKey(
            secret=self.secret,
            expires_raw=self.expires,
        )
