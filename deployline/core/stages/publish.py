"""
Registry Publisher — authenticate, ensure the repository, push every tag.

Order matters: login, then describe-or-create the repository, then
pushes. Only the run-id tag is load-bearing; short-hash and ``latest``
are best effort. Nothing is rolled back after a partial push.
"""

from __future__ import annotations

import logging

from deployline.core.engine.toolchain import StageResults, Toolchain
from deployline.core.errors import (
    PushFailure,
    RegistryAuthFailure,
    RepositoryProvisionFailure,
)
from deployline.core.models.run import REGISTRY_PUBLISHER, RunContext, StageResult
from deployline.core.stages.identity import identity_from
from deployline.core.stages.image import references_from

logger = logging.getLogger(__name__)

_ALREADY_EXISTS = "RepositoryAlreadyExistsException"


def authenticate(context: RunContext, toolchain: Toolchain, registry: str) -> None:
    """Log docker in to the registry with a short-lived password."""
    token = toolchain.call(context, "aws", "ecr-login-password", region=context.region)
    if not token.ok or not token.output:
        raise RegistryAuthFailure(
            f"Cannot obtain registry credentials: {token.error or 'empty password'}"
        )

    login = toolchain.call(
        context,
        "docker",
        "login",
        registry=registry,
        username="AWS",
        password=token.output,
    )
    if not login.ok:
        raise RegistryAuthFailure(f"docker login to {registry} failed: {login.error}")


def ensure_repository(context: RunContext, toolchain: Toolchain) -> bool:
    """Create the repository unless it exists.

    Returns:
        True if this call created the repository.
    """
    described = toolchain.call(
        context,
        "aws",
        "ecr-describe-repository",
        repository=context.repository_name,
        region=context.region,
    )
    if described.ok:
        logger.debug("Repository %s exists", context.repository_name)
        return False

    logger.info(
        "Repository %s not found (%s) — creating",
        context.repository_name,
        described.error,
    )
    created = toolchain.call(
        context,
        "aws",
        "ecr-create-repository",
        repository=context.repository_name,
        region=context.region,
        scan_on_push=True,
    )
    if created.ok:
        return True
    if _ALREADY_EXISTS in (created.error or ""):
        # Lost a race with another creator, or describe failed transiently
        return False

    raise RepositoryProvisionFailure(
        f"Repository {context.repository_name} could not be described "
        f"({described.error}) or created ({created.error})"
    )


def publish_image(
    context: RunContext,
    results: StageResults,
    toolchain: Toolchain,
) -> StageResult:
    identity = identity_from(results)
    refs = references_from(results)

    authenticate(context, toolchain, identity.registry)
    created = ensure_repository(context, toolchain)

    pushed: list[str] = []
    failed: dict[str, str] = {}
    for ref in refs:
        receipt = toolchain.call(
            context,
            "docker",
            "push",
            qualifier=ref.tag,
            timeout=toolchain.config.image.push_timeout,
            image=ref.uri,
        )
        if receipt.ok:
            pushed.append(ref.tag)
            logger.info("Pushed %s", ref.uri)
            continue
        if ref.tag == context.primary_tag:
            # Secondary tags must never point at an image the run tag lacks
            raise PushFailure(
                f"Push of run tag {ref.tag} failed: {receipt.error}",
                details={"pushed_tags": pushed, "repository_created": created},
            )
        failed[ref.tag] = receipt.error or "push failed"
        logger.warning("Push of %s failed: %s", ref.uri, receipt.error)

    detail = f"Pushed {', '.join(pushed)} to {identity.registry}/{context.repository_name}"
    if failed:
        detail += f" (best-effort tags failed: {', '.join(failed)})"

    return StageResult.success(
        REGISTRY_PUBLISHER,
        detail,
        warning=bool(failed),
        outputs={
            "image_uri": refs[0].uri,
            "pushed_tags": pushed,
            "failed_tags": failed,
            "repository_created": created,
        },
    )
