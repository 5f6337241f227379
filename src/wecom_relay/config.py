"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation.

Secret-bearing fields (tokens, keys, secrets, API credentials) hold the *name*
of an environment variable rather than the value itself. ``resolve_secrets``
swaps the names for the values found in the process environment.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import AliasChoices, BaseModel, Field, ValidationError, model_validator

from wecom_relay.errors import ConfigError


class WecomConfig(BaseModel):
    corp_id: str
    api_base: str = "https://qyapi.weixin.qq.com"
    timeout: int = 10


class ProviderConfig(BaseModel):
    id: int
    name: str = ""
    endpoint: str
    api_key: str
    max_tokens: int = Field(gt=0)  # context window ceiling
    prompt_token_price: float = Field(ge=0)  # per 1000 tokens
    completion_token_price: float = Field(ge=0)  # per 1000 tokens
    encoding: str = "cl100k_base"
    timeout: int = 120


class AssistantConfig(BaseModel):
    agent_id: int
    name: str = ""
    token: str
    key: str
    secret: str
    prompt: str = "You are a helpful assistant."
    provider_id: int
    token_reservation: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("token_reservation", "context_tokens_reservation"),
    )


class AccountantConfig(BaseModel):
    agent_id: int
    token: str
    key: str


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8088


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    wecom: WecomConfig
    providers: list[ProviderConfig]
    assistants: list[AssistantConfig]
    accountant: AccountantConfig
    storage_path: str = "./data/wecom_relay.db"
    admin_account: str
    server: ServerConfig = Field(default_factory=ServerConfig)

    @model_validator(mode="after")
    def _check_references(self) -> AppConfig:
        providers = {p.id: p for p in self.providers}
        if len(providers) != len(self.providers):
            raise ValueError("provider ids must be unique")

        seen: set[int] = {self.accountant.agent_id}
        for assistant in self.assistants:
            if assistant.agent_id in seen:
                raise ValueError(f"duplicate agent_id: {assistant.agent_id}")
            seen.add(assistant.agent_id)

            provider = providers.get(assistant.provider_id)
            if provider is None:
                raise ValueError(
                    f"assistant {assistant.agent_id} references unknown provider "
                    f"{assistant.provider_id}"
                )
            if assistant.token_reservation >= provider.max_tokens:
                raise ValueError(
                    f"assistant {assistant.agent_id}: token_reservation "
                    f"({assistant.token_reservation}) must be below the provider "
                    f"context window ({provider.max_tokens})"
                )
        return self

    def provider(self, provider_id: int) -> ProviderConfig:
        for provider in self.providers:
            if provider.id == provider_id:
                return provider
        raise KeyError(provider_id)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        value = os.environ.get(match.group(1))
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(_interpolate_env_vars(raw_text)) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_file}: {e}") from e

    try:
        return AppConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_file}: {e}") from e


def _lookup(name: str, environ: Mapping[str, str]) -> str:
    value = environ.get(name)
    if value is None:
        raise ConfigError(f"找不到环境变量{name}")
    return value


def resolve_secrets(config: AppConfig, environ: Mapping[str, str] | None = None) -> AppConfig:
    """Return a copy of *config* with every secret name replaced by its env value."""
    env = os.environ if environ is None else environ

    wecom = config.wecom.model_copy(update={"corp_id": _lookup(config.wecom.corp_id, env)})
    providers = [
        p.model_copy(
            update={
                "endpoint": _lookup(p.endpoint, env),
                "api_key": _lookup(p.api_key, env),
            }
        )
        for p in config.providers
    ]
    assistants = [
        a.model_copy(
            update={
                "token": _lookup(a.token, env),
                "key": _lookup(a.key, env),
                "secret": _lookup(a.secret, env),
            }
        )
        for a in config.assistants
    ]
    accountant = config.accountant.model_copy(
        update={
            "token": _lookup(config.accountant.token, env),
            "key": _lookup(config.accountant.key, env),
        }
    )
    return config.model_copy(
        update={
            "wecom": wecom,
            "providers": providers,
            "assistants": assistants,
            "accountant": accountant,
            "admin_account": _lookup(config.admin_account, env),
        }
    )
