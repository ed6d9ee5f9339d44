"""Wire models for the REST backends."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def parse_duration(value: Any) -> float:
    """Parse a protobuf Duration string ("3600s", "0.5s") into seconds."""
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if text.endswith("s"):
        text = text[:-1]
    return float(text)


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ============================================================================
# Installations
# ============================================================================

class InstallationAuthToken(WireModel):
    """Installation auth token with its lifetime."""
    token: str
    expires_in: float = Field(alias="expiresIn")

    @field_validator("expires_in", mode="before")
    @classmethod
    def _duration(cls, v):
        return parse_duration(v)


class InstallationResponse(WireModel):
    """Response to a create-installation call."""
    fid: str
    refresh_token: str = Field(alias="refreshToken")
    auth_token: InstallationAuthToken = Field(alias="authToken")


# ============================================================================
# App Check
# ============================================================================

class AppCheckExchangeResponse(WireModel):
    """Response to a provider token exchange."""
    token: str
    ttl: float

    @field_validator("ttl", mode="before")
    @classmethod
    def _duration(cls, v):
        return parse_duration(v)


# ============================================================================
# Remote Config
# ============================================================================

class FetchState(str, Enum):
    """Template state reported by the fetch endpoint."""
    UNSPECIFIED = "INSTANCE_STATE_UNSPECIFIED"
    UPDATE = "UPDATE"
    NO_TEMPLATE = "NO_TEMPLATE"
    NO_CHANGE = "NO_CHANGE"
    EMPTY_CONFIG = "EMPTY_CONFIG"


class FetchResponse(WireModel):
    """Remote Config fetch response body."""
    state: FetchState = FetchState.UNSPECIFIED
    entries: Dict[str, str] = Field(default_factory=dict)
    template_version: Optional[str] = Field(default=None, alias="templateVersion")


# ============================================================================
# Vertex AI generateContent
# ============================================================================

class Part(WireModel):
    text: Optional[str] = None
    inline_data: Optional[Dict[str, Any]] = Field(default=None, alias="inlineData")
    function_call: Optional[Dict[str, Any]] = Field(default=None, alias="functionCall")


class Content(WireModel):
    role: Optional[str] = None
    parts: List[Part] = Field(default_factory=list)


class SafetyRating(WireModel):
    category: str
    probability: Optional[str] = None
    blocked: Optional[bool] = None


class Candidate(WireModel):
    index: int = 0
    content: Optional[Content] = None
    finish_reason: Optional[str] = Field(default=None, alias="finishReason")
    finish_message: Optional[str] = Field(default=None, alias="finishMessage")
    safety_ratings: List[SafetyRating] = Field(default_factory=list, alias="safetyRatings")


class PromptFeedback(WireModel):
    block_reason: Optional[str] = Field(default=None, alias="blockReason")
    block_reason_message: Optional[str] = Field(default=None, alias="blockReasonMessage")
    safety_ratings: List[SafetyRating] = Field(default_factory=list, alias="safetyRatings")


class UsageMetadata(WireModel):
    prompt_token_count: int = Field(default=0, alias="promptTokenCount")
    candidates_token_count: int = Field(default=0, alias="candidatesTokenCount")
    total_token_count: int = Field(default=0, alias="totalTokenCount")
