"""
Remote Config + Vertex AI runner - Main Entry Point

Initializes the app, registers App Check, fetches the model name and
prompt from Remote Config, then asks the model and prints its answer.

Usage:
    python -m vertex_rc.main

Environment Variables:
    FIREBASE_API_KEY                  - Web API key
    FIREBASE_PROJECT_ID               - Project ID
    FIREBASE_APP_ID                   - Web app ID
    FIREBASE_MESSAGING_SENDER_ID      - Project number (optional)
    RECAPTCHA_ENTERPRISE_SITE_KEY     - App Check site key
    RECAPTCHA_ENTERPRISE_TOKEN        - reCAPTCHA Enterprise token for the site key
    APP_CHECK_DEBUG_TOKEN             - Use the debug provider instead (optional)
    VERTEX_AI_LOCATION                - Model location (default: us-central1)
    RC_MINIMUM_FETCH_INTERVAL_MILLIS  - Remote Config fetch interval (default: 0)
    REQUEST_TIMEOUT                   - HTTP timeout in seconds (default: 60)
    DEBUG                             - Enable debug logging
"""

import asyncio
import inspect
import logging
import os
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from dotenv import load_dotenv

from .app import FirebaseApp, initialize_app
from .app_check import (
    AppCheck,
    AppCheckProvider,
    DebugProvider,
    ReCaptchaEnterpriseProvider,
    initialize_app_check,
)
from .config import Config
from .remote_config import RemoteConfig, get_remote_config
from .vertex_ai import GenerativeModel, get_generative_model, get_vertex_ai

logger = logging.getLogger(__name__)


class Step(str, Enum):
    """Steps of a run, in execution order."""
    INITIALIZE = "initialize"
    REGISTER_ATTESTATION = "register_attestation"
    CONFIGURE_REMOTE_CONFIG = "configure_remote_config"
    FETCH_AND_ACTIVATE = "fetch_and_activate"
    READ_PARAMETERS = "read_parameters"
    CREATE_MODEL_SESSION = "create_model_session"
    GENERATE = "generate"


class FailurePolicy(str, Enum):
    """What a failed step does to the run."""
    ABORT = "abort"
    CONTINUE = "continue"


class RunState(str, Enum):
    """Run progress. Only moves forward."""
    UNINITIALIZED = "uninitialized"
    CONTEXT_READY = "context_ready"
    ATTESTATION_REGISTERED = "attestation_registered"
    CONFIG_CONFIGURED = "config_configured"
    CONFIG_SETTLED = "config_settled"
    MODEL_SESSION_READY = "model_session_ready"
    RESULT_PRINTED = "result_printed"


# Only the Remote Config fetch may fail without ending the run: the
# defaults stay active until a fetch is activated.
STEP_POLICIES: Dict[Step, FailurePolicy] = {
    Step.INITIALIZE: FailurePolicy.ABORT,
    Step.REGISTER_ATTESTATION: FailurePolicy.ABORT,
    Step.CONFIGURE_REMOTE_CONFIG: FailurePolicy.ABORT,
    Step.FETCH_AND_ACTIVATE: FailurePolicy.CONTINUE,
    Step.READ_PARAMETERS: FailurePolicy.ABORT,
    Step.CREATE_MODEL_SESSION: FailurePolicy.ABORT,
    Step.GENERATE: FailurePolicy.ABORT,
}

# State reached once a step has settled
STEP_STATES: Dict[Step, RunState] = {
    Step.INITIALIZE: RunState.CONTEXT_READY,
    Step.REGISTER_ATTESTATION: RunState.ATTESTATION_REGISTERED,
    Step.CONFIGURE_REMOTE_CONFIG: RunState.CONFIG_CONFIGURED,
    Step.FETCH_AND_ACTIVATE: RunState.CONFIG_SETTLED,
    Step.CREATE_MODEL_SESSION: RunState.MODEL_SESSION_READY,
}


@dataclass
class StepOutcome:
    """Tagged result of one step."""
    step: Step
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None


class OrchestrationError(Exception):
    """A step failed under the ABORT policy."""

    def __init__(self, step: Step, cause: BaseException):
        self.step = step
        self.cause = cause
        super().__init__(f"{step.value} failed: {cause}")


def build_attestation_provider(config: Config) -> AppCheckProvider:
    """Debug provider when a debug token is configured, reCAPTCHA Enterprise otherwise."""
    if config.app_check_debug_token:
        return DebugProvider(config.app_check_debug_token)
    return ReCaptchaEnterpriseProvider(config.recaptcha_site_key, config.recaptcha_token or "")


class Orchestrator:
    """
    Runs the steps strictly in order.

    Every step produces a StepOutcome; STEP_POLICIES decides whether a
    failed outcome ends the run.
    """

    def __init__(
        self,
        config: Config,
        client: Optional[httpx.AsyncClient] = None,
        policies: Optional[Dict[Step, FailurePolicy]] = None,
    ):
        self.config = config
        self.client = client
        self.policies = {**STEP_POLICIES, **(policies or {})}
        self.state = RunState.UNINITIALIZED
        self.outcomes: List[StepOutcome] = []
        self.app: Optional[FirebaseApp] = None

    async def run(self) -> str:
        """Run every step and return the printed text."""
        try:
            app = (await self._execute(Step.INITIALIZE, self.initialize)).value
            self.app = app

            app_check = (await self._execute(
                Step.REGISTER_ATTESTATION, self.register_attestation, app)).value

            remote_config = (await self._execute(
                Step.CONFIGURE_REMOTE_CONFIG, self.configure_remote_config, app, app_check)).value

            fetched = await self._execute(
                Step.FETCH_AND_ACTIVATE, self.fetch_and_activate, remote_config)
            if fetched.ok:
                logger.info("Remote Config fetched.")
            else:
                logger.error(f"Remote Config fetch failed: {fetched.error}")

            model_name, prompt = (await self._execute(
                Step.READ_PARAMETERS, self.read_parameters, remote_config)).value
            logger.info(f"prompt is: {prompt}")

            model = (await self._execute(
                Step.CREATE_MODEL_SESSION, self.create_model_session, app, app_check, model_name)).value

            text = (await self._execute(Step.GENERATE, self.generate, model, prompt)).value
            print(text)
            self.state = RunState.RESULT_PRINTED
            return text
        finally:
            if self.app is not None:
                await self.app.aclose()

    async def _execute(self, step: Step, func: Callable, *args) -> StepOutcome:
        """Run one step, record its outcome, and apply its failure policy."""
        logger.debug(f"Step {step.value} starting (state={self.state.value})")
        try:
            value = func(*args)
            if inspect.isawaitable(value):
                value = await value
        except Exception as e:
            outcome = StepOutcome(step=step, ok=False, error=e)
        else:
            outcome = StepOutcome(step=step, ok=True, value=value)

        self.outcomes.append(outcome)

        if not outcome.ok and self.policies[step] is FailurePolicy.ABORT:
            logger.debug(f"Step {step.value} failed, aborting run")
            raise OrchestrationError(step, outcome.error) from outcome.error

        if step in STEP_STATES:
            self.state = STEP_STATES[step]
        return outcome

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def initialize(self) -> FirebaseApp:
        return initialize_app(
            self.config.firebase_options,
            client=self.client,
            timeout=self.config.request_timeout,
        )

    def register_attestation(self, app: FirebaseApp) -> AppCheck:
        return initialize_app_check(app, build_attestation_provider(self.config))

    def configure_remote_config(self, app: FirebaseApp, app_check: AppCheck) -> RemoteConfig:
        remote_config = get_remote_config(app, app_check=app_check)
        remote_config.settings.minimum_fetch_interval_millis = self.config.minimum_fetch_interval_millis
        remote_config.default_config = dict(self.config.remote_config_defaults)
        return remote_config

    async def fetch_and_activate(self, remote_config: RemoteConfig) -> bool:
        return await remote_config.fetch_and_activate()

    def read_parameters(self, remote_config: RemoteConfig) -> Tuple[str, str]:
        """Resolve model name and prompt; blank values fall back to the defaults."""
        defaults = self.config.remote_config_defaults
        resolved = []
        for key in ("model_name", "prompt"):
            value = remote_config.get_value(key)
            text = value.as_string()
            if not text.strip():
                logger.warning(f"Parameter '{key}' is empty ({value.get_source().value}), "
                               f"using default")
                text = defaults[key]
            resolved.append(text)
        return resolved[0], resolved[1]

    def create_model_session(
        self, app: FirebaseApp, app_check: AppCheck, model_name: str
    ) -> GenerativeModel:
        vertex_ai = get_vertex_ai(app, app_check=app_check, location=self.config.vertex_location)
        return get_generative_model(vertex_ai, model_name)

    async def generate(self, model: GenerativeModel, prompt: str) -> str:
        result = await model.generate_content(prompt)
        return result.response.text()


def main():
    """Run once and exit."""
    load_dotenv()

    logging.basicConfig(
        level=logging.DEBUG if os.getenv("DEBUG") else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    orchestrator = Orchestrator(Config())
    try:
        asyncio.run(orchestrator.run())
    except OrchestrationError as e:
        logger.error(f"Run aborted at step '{e.step.value}': {e.cause}")
        sys.exit(1)


if __name__ == "__main__":
    main()
