"""Pydantic models describing the on-disk mock fleet configuration."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ServiceReference(BaseModel):
    """Entry of the global config naming a service and its active usecase."""

    name: str = ""
    usecase: str = ""


class GlobalConfig(BaseModel):
    """Root configuration listing the services to run."""

    services: list[ServiceReference] = Field(default_factory=list)

    def usecases(self) -> dict[str, str]:
        """Return the desired ``service -> usecase`` mapping."""

        return {ref.name: ref.usecase for ref in self.services}


class DelayConfig(BaseModel):
    """Simulated response latency, all values in milliseconds."""

    enabled: bool = False
    fixed: int = 0
    min: int = 0
    max: int = 0


class ServiceConfig(BaseModel):
    """Per-service settings loaded from ``<service>/config.yaml``."""

    name: str = ""
    port: int = 0
    delay: DelayConfig = Field(default_factory=DelayConfig)


class MockRequestSpec(BaseModel):
    """Criteria an incoming request must satisfy."""

    path: str = ""
    method: str = ""
    body: dict[str, Any] | None = None


class MockResponseSpec(BaseModel):
    """Canned response returned when the request spec matches."""

    model_config = ConfigDict(populate_by_name=True)

    status_code: int = Field(default=0, alias="statusCode")
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None


class MockEntry(BaseModel):
    """Single request matcher and canned response pair."""

    request: MockRequestSpec
    response: MockResponseSpec
