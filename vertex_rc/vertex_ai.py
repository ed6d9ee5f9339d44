"""Vertex AI in Firebase: generative model client."""

import logging
import platform
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import httpx
from pydantic import Field, ValidationError

from . import __version__
from .app import FirebaseApp
from .app_check import AppCheck
from .errors import VertexAIError
from .models import Candidate, PromptFeedback, UsageMetadata, WireModel

logger = logging.getLogger(__name__)

VERTEX_AI_API_URL = "https://firebasevertexai.googleapis.com"
API_VERSION = "v1beta"
DEFAULT_LOCATION = "us-central1"

# Finish reasons that make the candidate text unusable
BAD_FINISH_REASONS = {"SAFETY", "RECITATION"}

ContentRequest = Union[str, List[Union[str, Dict[str, Any]]], Dict[str, Any]]


class GenerateContentResponse(WireModel):
    """generateContent response with text helpers."""
    candidates: List[Candidate] = Field(default_factory=list)
    prompt_feedback: Optional[PromptFeedback] = Field(default=None, alias="promptFeedback")
    usage_metadata: Optional[UsageMetadata] = Field(default=None, alias="usageMetadata")

    def text(self) -> str:
        """
        Text of the first candidate.

        Raises VertexAIError if the candidate was stopped for safety or
        recitation, or if the prompt itself was blocked.
        """
        if self.candidates:
            if len(self.candidates) > 1:
                logger.warning(f"Response has {len(self.candidates)} candidates, "
                               f"returning text from the first one")
            candidate = self.candidates[0]
            if candidate.finish_reason in BAD_FINISH_REASONS:
                message = f"Response error: {candidate.finish_reason}"
                if candidate.finish_message:
                    message = f"{message}: {candidate.finish_message}"
                raise VertexAIError("response-error", message)
            if candidate.content is None:
                return ""
            return "".join(part.text for part in candidate.content.parts if part.text)

        feedback = self.prompt_feedback
        if feedback is not None and feedback.block_reason:
            message = f"Text not available. Prompt blocked: {feedback.block_reason}"
            if feedback.block_reason_message:
                message = f"{message}: {feedback.block_reason_message}"
            raise VertexAIError("response-error", message)

        return ""


@dataclass
class GenerateContentResult:
    """Result of one generate_content call."""
    response: GenerateContentResponse


class VertexAI:
    """Vertex AI service bound to one app."""

    def __init__(
        self,
        app: FirebaseApp,
        app_check: Optional[AppCheck] = None,
        location: str = DEFAULT_LOCATION,
    ):
        self.app = app
        self.app_check = app_check
        self.location = location


def _model_path(model: str) -> str:
    if "/" in model:
        if model.startswith("models/"):
            return f"publishers/google/{model}"
        return model
    return f"publishers/google/models/{model}"


def _to_part(item: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(item, str):
        return {"text": item}
    return item


def format_request(request: ContentRequest) -> Dict[str, Any]:
    """Normalize a string, list of parts, or request dict into a request body."""
    if isinstance(request, str):
        return {"contents": [{"role": "user", "parts": [{"text": request}]}]}
    if isinstance(request, list):
        return {"contents": [{"role": "user", "parts": [_to_part(p) for p in request]}]}
    if isinstance(request, dict) and "contents" in request:
        return dict(request)
    raise VertexAIError("invalid-content", f"Unsupported request type: {type(request).__name__}")


class GenerativeModel:
    """
    One model session.

    The model name is fixed at creation; each generate_content call is
    independent.
    """

    def __init__(
        self,
        vertex_ai: VertexAI,
        model: str,
        generation_config: Optional[Dict[str, Any]] = None,
        safety_settings: Optional[List[Dict[str, Any]]] = None,
        system_instruction: Optional[str] = None,
    ):
        options = vertex_ai.app.options
        if not model:
            raise VertexAIError("no-model", "Must provide a model name")
        if not options.api_key:
            raise VertexAIError("no-api-key", "App options must include an API key")
        if not options.project_id:
            raise VertexAIError("no-project-id", "App options must include a project ID")

        self.vertex_ai = vertex_ai
        self.model = _model_path(model)
        self.generation_config = generation_config or {}
        self.safety_settings = safety_settings or []
        self.system_instruction = system_instruction

    @property
    def url(self) -> str:
        project = self.vertex_ai.app.options.project_id
        return (f"{VERTEX_AI_API_URL}/{API_VERSION}/projects/{project}"
                f"/locations/{self.vertex_ai.location}/{self.model}:generateContent")

    async def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-client": f"gl-python/{platform.python_version()} fire/{__version__}",
            "x-goog-api-key": self.vertex_ai.app.options.api_key,
        }
        if self.vertex_ai.app_check is not None:
            headers.update(await self.vertex_ai.app_check.headers())
        return headers

    async def generate_content(self, request: ContentRequest) -> GenerateContentResult:
        """Send one generateContent request."""
        payload = format_request(request)
        if self.generation_config:
            payload.setdefault("generationConfig", self.generation_config)
        if self.safety_settings:
            payload.setdefault("safetySettings", self.safety_settings)
        if self.system_instruction:
            payload.setdefault("systemInstruction", {
                "role": "system",
                "parts": [{"text": self.system_instruction}],
            })

        logger.info(f"generateContent: model={self.model}, location={self.vertex_ai.location}")

        headers = await self._headers()
        try:
            resp = await self.vertex_ai.app.client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise VertexAIError("fetch-error", f"Error fetching from {self.url}: {e}") from e

        if not resp.is_success:
            raise VertexAIError.from_response(resp, "fetch-error")

        try:
            response = GenerateContentResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise VertexAIError("parse-failed", f"Malformed generateContent response: {e}") from e

        if response.usage_metadata:
            logger.debug(f"Token usage: {response.usage_metadata.total_token_count}")
        return GenerateContentResult(response=response)


def get_vertex_ai(
    app: FirebaseApp,
    app_check: Optional[AppCheck] = None,
    location: str = DEFAULT_LOCATION,
) -> VertexAI:
    """Create a Vertex AI service for `app`."""
    return VertexAI(app, app_check=app_check, location=location)


def get_generative_model(vertex_ai: VertexAI, model: str, **kwargs) -> GenerativeModel:
    """Create a model session; see GenerativeModel for keyword options."""
    return GenerativeModel(vertex_ai, model, **kwargs)
