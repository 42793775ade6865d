"""
Identity Resolver — who is deploying, and into which registry.

A single bounded lookup of the caller identity. Any failure falls back
to the configured placeholder account: the run continues with a
warning instead of aborting, so dry runs against a pinned registry
still work.
"""

from __future__ import annotations

import logging

from deployline.core.engine.toolchain import StageResults, Toolchain
from deployline.core.errors import IdentityUnavailable
from deployline.core.models.run import IDENTITY_RESOLVER, Identity, RunContext, StageResult

logger = logging.getLogger(__name__)


def lookup_identity(context: RunContext, toolchain: Toolchain) -> Identity:
    """Live identity lookup. Raises IdentityUnavailable on any problem."""
    receipt = toolchain.call(
        context,
        "aws",
        "caller-identity",
        timeout=toolchain.config.identity_timeout,
        region=context.region,
    )
    if not receipt.ok:
        raise IdentityUnavailable(receipt.error or "caller identity lookup failed")

    try:
        data = receipt.output_json()
    except ValueError as e:
        raise IdentityUnavailable(f"unparseable caller identity: {e}") from e

    account = str(data.get("Account") or "").strip() if isinstance(data, dict) else ""
    if not account:
        raise IdentityUnavailable("caller identity returned no account")

    return Identity(
        account_id=account,
        region=context.region,
        provenance="resolved",
        arn=str(data.get("Arn", "")),
    )


def resolve_identity(
    context: RunContext,
    results: StageResults,
    toolchain: Toolchain,
) -> StageResult:
    try:
        identity = lookup_identity(context, toolchain)
        detail = f"Resolved account {identity.account_id} ({identity.arn or 'unknown principal'})"
    except IdentityUnavailable as e:
        identity = Identity(
            account_id=toolchain.config.fallback_account_id,
            region=context.region,
            provenance="fallback",
        )
        detail = f"Identity lookup failed ({e}); using fallback account {identity.account_id}"
        logger.warning(
            "Identity lookup failed (%s); using fallback account %s", e, identity.account_id
        )

    return StageResult.success(
        IDENTITY_RESOLVER,
        detail,
        warning=identity.warning,
        outputs={
            "identity": identity.model_dump(mode="json"),
            "registry": identity.registry,
        },
    )


def identity_from(results: StageResults) -> Identity:
    """Read the resolved identity back from prior results."""
    return Identity.model_validate(results[IDENTITY_RESOLVER].outputs["identity"])
