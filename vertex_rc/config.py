"""Runtime configuration."""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from .app import FirebaseOptions

DEFAULT_MODEL_NAME = "gemini-1.5-flash-preview-0514"
DEFAULT_PROMPT = (
    "Tell me why Remote Config is essential when developing apps with "
    "Vertex AI for Firebase SDKs!"
)


def _optional(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


@dataclass
class Config:
    """Configuration loaded from environment variables."""

    # Firebase project
    api_key: str = field(default_factory=lambda: os.getenv("FIREBASE_API_KEY", ""))
    project_id: str = field(default_factory=lambda: os.getenv("FIREBASE_PROJECT_ID", ""))
    app_id: str = field(default_factory=lambda: os.getenv("FIREBASE_APP_ID", ""))
    messaging_sender_id: Optional[str] = field(
        default_factory=lambda: _optional("FIREBASE_MESSAGING_SENDER_ID"))

    # App Check
    recaptcha_site_key: str = field(
        default_factory=lambda: os.getenv("RECAPTCHA_ENTERPRISE_SITE_KEY", ""))
    recaptcha_token: Optional[str] = field(
        default_factory=lambda: _optional("RECAPTCHA_ENTERPRISE_TOKEN"))
    app_check_debug_token: Optional[str] = field(
        default_factory=lambda: _optional("APP_CHECK_DEBUG_TOKEN"))

    # Vertex AI
    vertex_location: str = field(default_factory=lambda: os.getenv("VERTEX_AI_LOCATION", "us-central1"))

    # HTTP
    request_timeout: float = field(default_factory=lambda: float(os.getenv("REQUEST_TIMEOUT", "60")))

    # Remote Config
    minimum_fetch_interval_millis: int = field(
        default_factory=lambda: int(os.getenv("RC_MINIMUM_FETCH_INTERVAL_MILLIS", "0")))
    default_model_name: str = DEFAULT_MODEL_NAME
    default_prompt: str = DEFAULT_PROMPT

    @property
    def firebase_options(self) -> FirebaseOptions:
        """Project identifiers used to initialize the app."""
        return FirebaseOptions(
            api_key=self.api_key,
            project_id=self.project_id,
            app_id=self.app_id,
            messaging_sender_id=self.messaging_sender_id,
        )

    @property
    def remote_config_defaults(self) -> Dict[str, str]:
        """In-app default values for the Remote Config parameters."""
        return {
            "model_name": self.default_model_name,
            "prompt": self.default_prompt,
        }
