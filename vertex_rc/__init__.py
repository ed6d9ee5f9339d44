"""
Remote Config + Vertex AI

Async clients for App Check, Remote Config and Vertex AI in Firebase,
and a runner that fetches a model name and prompt from Remote Config
and prints the model's answer.

Components:
- app: Application context (options + shared HTTP client)
- app_check: Attestation providers and App Check token cache
- installations: Installation id and auth token
- remote_config: Fetch/activate and typed value reads
- vertex_ai: Generative model sessions
- main: Step-by-step runner with explicit failure policies
"""

__version__ = "0.1.0"
