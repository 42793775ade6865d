"""
Image Builder — one build, three tags.

The image is built once under the run-id tag, its id captured, and the
short-revision and ``latest`` tags pointed at the same id. Any failure
is fatal: no tag of this run is valid and nothing is published.
"""

from __future__ import annotations

import logging

from deployline.core.engine.toolchain import StageResults, Toolchain
from deployline.core.errors import BuildFailure
from deployline.core.models.run import (
    IMAGE_BUILDER,
    ImageReference,
    RunContext,
    StageResult,
)
from deployline.core.stages.identity import identity_from

logger = logging.getLogger(__name__)


def image_references(
    context: RunContext, registry: str, image_id: str = ""
) -> list[ImageReference]:
    """One reference per tag, in tag order."""
    return [
        ImageReference(
            registry=registry,
            repository=context.repository_name,
            tag=tag,
            image_id=image_id,
        )
        for tag in context.image_tags
    ]


def build_image(
    context: RunContext,
    results: StageResults,
    toolchain: Toolchain,
) -> StageResult:
    identity = identity_from(results)
    settings = toolchain.config.image
    build_context = toolchain.resolve(settings.context)
    dockerfile = build_context / settings.dockerfile

    if not build_context.is_dir():
        raise BuildFailure(f"Build context not found: {build_context}")
    if not dockerfile.is_file():
        raise BuildFailure(f"Dockerfile not found: {dockerfile}")

    refs = image_references(context, identity.registry)
    primary = refs[0]

    logger.info("Building %s from %s", primary.uri, build_context)
    receipt = toolchain.call(
        context,
        "docker",
        "build",
        timeout=settings.build_timeout,
        image=primary.uri,
        context=str(build_context),
        dockerfile=str(dockerfile),
        build_args=settings.build_args,
        labels={
            "org.opencontainers.image.revision": context.revision,
            "deployline.run-id": str(context.run_id),
        },
    )
    if not receipt.ok:
        raise BuildFailure(f"docker build failed: {receipt.error}")

    inspected = toolchain.call(context, "docker", "inspect", image=primary.uri)
    image_id = inspected.output.strip() if inspected.ok else ""
    if not image_id:
        raise BuildFailure(f"Built image {primary.uri} cannot be inspected: {inspected.error}")

    for ref in refs[1:]:
        tagged = toolchain.call(
            context,
            "docker",
            "tag",
            qualifier=ref.tag,
            source=primary.uri,
            target=ref.uri,
        )
        if not tagged.ok:
            raise BuildFailure(f"docker tag {ref.tag} failed: {tagged.error}")

    refs = image_references(context, identity.registry, image_id)
    return StageResult.success(
        IMAGE_BUILDER,
        f"Built {image_id[:19]} tagged {', '.join(context.image_tags)}",
        outputs={
            "image_id": image_id,
            "image_uri": primary.uri,
            "references": [r.model_dump(mode="json") for r in refs],
        },
    )


def references_from(results: StageResults) -> list[ImageReference]:
    """Read the built image references back from prior results."""
    return [
        ImageReference.model_validate(r)
        for r in results[IMAGE_BUILDER].outputs["references"]
    ]
