import os
import re
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

VERSION = "0.1.0"
MAX_SYMBOLS = 23
MAX_FIELD_CODE = 21
DEFAULT_FIELDS = [0, 1, 2, 3, 4, 8, 9, 21]


def _split_list(raw: str) -> list[str]:
    return [s.strip() for s in re.split(r"[,+]", raw) if s.strip()]


class StreamerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = "streamerapp.datek.com"
    port: int = Field(default=80, ge=1, le=65535)
    user: str = Field(min_length=1)
    password: str = Field(min_length=1)
    symbols: list[str]
    fields: list[int] = Field(default_factory=lambda: list(DEFAULT_FIELDS))
    timeout_sec: float = Field(default=60.0, gt=0)
    agent: str = f"streamer-gateway/{VERSION}"
    recv_max: int = Field(default=3000, gt=2)
    handshake_recv_max: int = Field(default=512, gt=0)
    max_symbol_length: int = Field(default=5, ge=1)
    strict_symbol_length: bool = False
    strict_marker: bool = False
    deliver_raw: bool = False
    accumulate: bool = True
    retry_backoff_base_sec: float = Field(default=0.0, ge=0)
    retry_backoff_cap_sec: float = Field(default=30.0, ge=0)
    max_retries: Optional[int] = Field(default=None, ge=1)

    @field_validator("symbols")
    @classmethod
    def _check_symbols(cls, value: list[str]) -> list[str]:
        symbols = [s.strip().upper() for s in value if s.strip()]
        if not symbols:
            raise ValueError("at least one symbol is required")
        if len(symbols) > MAX_SYMBOLS:
            raise ValueError(f"at most {MAX_SYMBOLS} symbols per connection")
        for s in symbols:
            if "+" in s or " " in s:
                raise ValueError(f"invalid symbol {s!r}")
        return symbols

    @field_validator("fields")
    @classmethod
    def _check_fields(cls, value: list[int]) -> list[int]:
        codes = sorted(set(value) | {0})
        if codes[-1] > MAX_FIELD_CODE or codes[0] < 0:
            raise ValueError(f"field codes must be within 0..{MAX_FIELD_CODE}")
        return codes

    @field_validator("agent")
    @classmethod
    def _check_agent(cls, value: str) -> str:
        if "\n" in value or "\r" in value:
            raise ValueError("agent must be a single line")
        return value

    @property
    def symbols_param(self) -> str:
        return "+".join(self.symbols)

    @property
    def fields_param(self) -> str:
        return "+".join(str(code) for code in self.fields)

    @classmethod
    def from_env(cls) -> "StreamerConfig":
        raw: dict = {
            "user": os.getenv("STREAMER_USER"),
            "password": os.getenv("STREAMER_PASSWORD"),
            "symbols": _split_list(os.getenv("STREAMER_SYMBOLS", "")),
        }

        # only pass what is set so model defaults apply
        optional = {
            "host": "STREAMER_HOST",
            "port": "STREAMER_PORT",
            "timeout_sec": "STREAMER_TIMEOUT_SEC",
            "agent": "STREAMER_AGENT",
            "recv_max": "STREAMER_RECV_MAX",
            "max_symbol_length": "STREAMER_MAX_SYMBOL_LENGTH",
            "strict_symbol_length": "STREAMER_STRICT_SYMBOL_LENGTH",
            "strict_marker": "STREAMER_STRICT_MARKER",
            "deliver_raw": "STREAMER_DELIVER_RAW",
            "accumulate": "STREAMER_ACCUMULATE",
            "retry_backoff_base_sec": "STREAMER_RETRY_BACKOFF_BASE_SEC",
            "retry_backoff_cap_sec": "STREAMER_RETRY_BACKOFF_CAP_SEC",
            "max_retries": "STREAMER_MAX_RETRIES",
        }
        for key, env_name in optional.items():
            value = os.getenv(env_name)
            if value is not None and value != "":
                raw[key] = value

        raw_fields = os.getenv("STREAMER_FIELDS")
        if raw_fields:
            raw["fields"] = _split_list(raw_fields)

        return cls.model_validate(raw)


@lru_cache
def get_settings() -> StreamerConfig:
    return StreamerConfig.from_env()
