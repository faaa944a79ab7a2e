"""Authentication-mode resolution and credential env injection.

A session authenticates the agent in exactly one way. Supplying zero or
several modes is rejected before the engine is touched, and the session
environment only ever carries the one credential variable that the chosen
mode needs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from agentpod.errors import InvalidInputError, PreconditionFailedError
from agentpod.types import AuthMode, Credentials, VolumeMount

OAUTH_TOKEN_VAR = "CLAUDE_CODE_OAUTH_TOKEN"
API_KEY_VAR = "ANTHROPIC_API_KEY"
BEDROCK_FLAG_VAR = "CLAUDE_CODE_USE_BEDROCK"

# Where the host's AWS credential store appears inside the session
AWS_CONFIG_TARGET = "/home/agent/.aws"


@dataclass(frozen=True)
class AuthSpec:
    """What the chosen mode contributes to the creation request."""

    mode: AuthMode
    env: dict[str, str] = field(default_factory=dict)
    secret_env: dict[str, str] = field(default_factory=dict)
    mounts: list[VolumeMount] = field(default_factory=list)


def supplied_modes(creds: Credentials) -> list[AuthMode]:
    modes: list[AuthMode] = []
    if creds.oauth_token:
        modes.append("oauth_token")
    if creds.api_key:
        modes.append("api_key")
    if creds.bedrock:
        modes.append("bedrock")
    return modes


def resolve_auth(creds: Credentials, *, aws_config_dir: Path) -> AuthSpec:
    """Validate *creds* and map them to session env vars and mounts.

    Raises:
        InvalidInputError: zero or multiple modes, or Bedrock without a region.
        PreconditionFailedError: Bedrock without a local AWS credential store.
    """
    modes = supplied_modes(creds)
    if not modes:
        raise InvalidInputError(
            "No authentication supplied: provide exactly one of an OAuth token, "
            "an API key, or Bedrock"
        )
    if len(modes) > 1:
        raise InvalidInputError(
            f"Multiple authentication modes supplied ({', '.join(modes)}); provide exactly one"
        )

    if creds.oauth_token:
        return AuthSpec(mode="oauth_token", secret_env={OAUTH_TOKEN_VAR: creds.oauth_token})
    if creds.api_key:
        return AuthSpec(mode="api_key", secret_env={API_KEY_VAR: creds.api_key})

    if not creds.aws_region:
        raise InvalidInputError("Bedrock authentication requires an AWS region")
    if not aws_config_dir.is_dir():
        raise PreconditionFailedError(
            f"Bedrock authentication requires AWS credentials at {aws_config_dir}"
        )
    env = {BEDROCK_FLAG_VAR: "1", "AWS_REGION": creds.aws_region}
    if creds.aws_profile:
        env["AWS_PROFILE"] = creds.aws_profile
    return AuthSpec(
        mode="bedrock",
        env=env,
        mounts=[VolumeMount(str(aws_config_dir), AWS_CONFIG_TARGET, readonly=True)],
    )
