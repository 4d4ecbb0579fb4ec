"""Invocation context and release gating.

A release only proceeds when it is triggered from the canonical project on
its primary branch, so forks and pull requests never consume build
credentials or push under the canonical namespace. The decision covers the
whole run; individual variants are never gated.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

from release_matrix.config import Settings
from release_matrix.errors import GateDenied

logger = logging.getLogger(__name__)

BRANCH_REF_PREFIX = "refs/heads/"


def normalize_ref(ref: str) -> str:
    """Return a fully qualified ref (``main`` -> ``refs/heads/main``)."""
    if ref.startswith("refs/"):
        return ref
    return f"{BRANCH_REF_PREFIX}{ref}"


class Invocation(BaseModel):
    """The request that triggered a release run.

    Attributes:
        tag: Release tag supplied by the operator; any non-empty string.
        source_commit: Commit the binaries are built from; recorded as the
            provenance of every image.
        project_identity: ``owner/repository`` the run belongs to.
        source_branch: Ref the run was triggered on.
        repository_owner: Owner of the repository; derived from
            project_identity when not given.
    """

    model_config = ConfigDict(frozen=True)

    tag: str = Field(min_length=1)
    source_commit: str = Field(min_length=1)
    project_identity: str = Field(default="")
    source_branch: str = Field(default="")
    repository_owner: str | None = Field(default=None)

    @property
    def owner(self) -> str:
        if self.repository_owner:
            return self.repository_owner
        return self.project_identity.split("/", 1)[0]


@dataclass(frozen=True)
class GatePolicy:
    """Expected project context for an authorized run."""

    owner: str
    repository: str
    ref: str

    @classmethod
    def from_settings(cls, settings: Settings) -> GatePolicy:
        return cls(
            owner=settings.expected_owner,
            repository=settings.expected_repository,
            ref=normalize_ref(settings.expected_ref),
        )


@dataclass(frozen=True)
class GateDecision:
    """Outcome of the gate check."""

    proceed: bool
    reason: str


def authorize(invocation: Invocation, policy: GatePolicy) -> GateDecision:
    """Decide whether the run may proceed.

    Args:
        invocation: Triggering request.
        policy: Expected owner, repository and ref.

    Returns:
        GateDecision; proceed is True only when every check matches.
    """
    if invocation.owner != policy.owner:
        return GateDecision(
            False,
            f"repository owner '{invocation.owner}' is not '{policy.owner}'",
        )
    if invocation.project_identity != policy.repository:
        return GateDecision(
            False,
            f"repository '{invocation.project_identity}' is not "
            f"'{policy.repository}'",
        )
    ref = normalize_ref(invocation.source_branch) if invocation.source_branch else ""
    if ref != policy.ref:
        return GateDecision(False, f"ref '{ref}' is not '{policy.ref}'")
    return GateDecision(True, "authorized")


def ensure_authorized(invocation: Invocation, policy: GatePolicy) -> GateDecision:
    """Return the passing decision, or raise GateDenied."""
    decision = authorize(invocation, policy)
    if not decision.proceed:
        logger.warning("Release gate denied: %s", decision.reason)
        raise GateDenied(decision.reason)
    logger.info(
        "Release gate passed for %s on %s",
        invocation.project_identity,
        invocation.source_branch,
    )
    return decision


def invocation_from_env(
    tag: str,
    environ: Mapping[str, str] | None = None,
    source_commit: str | None = None,
    project_identity: str | None = None,
    source_branch: str | None = None,
    repository_owner: str | None = None,
) -> Invocation:
    """Build an Invocation, filling gaps from CI environment variables.

    Explicit arguments win over GITHUB_SHA, GITHUB_REPOSITORY, GITHUB_REF
    and GITHUB_REPOSITORY_OWNER.

    Raises:
        ValidationError: If the tag is empty or no commit is known.
    """
    env = os.environ if environ is None else environ
    return Invocation(
        tag=tag,
        source_commit=source_commit or env.get("GITHUB_SHA", ""),
        project_identity=project_identity or env.get("GITHUB_REPOSITORY", ""),
        source_branch=source_branch or env.get("GITHUB_REF", ""),
        repository_owner=repository_owner or env.get("GITHUB_REPOSITORY_OWNER"),
    )


__all__ = [
    "GateDecision",
    "GatePolicy",
    "Invocation",
    "authorize",
    "ensure_authorized",
    "invocation_from_env",
    "normalize_ref",
]
