"""
Config check use case — validate deployline.yml and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from deployline.core.config.loader import ConfigError, find_config_file, load_config
from deployline.core.models.config import PipelineConfig

DEFAULT_FALLBACK_ACCOUNT = "000000000000"


@dataclass
class ConfigCheckResult:
    """Result of configuration validation."""

    valid: bool = False
    config: PipelineConfig | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "pipeline": self.config.name if self.config else None,
            "repository": self.config.repository if self.config else None,
            "cluster": self.config.cluster if self.config else None,
            "manifest_count": len(self.config.deployment.manifests) if self.config else 0,
        }


def check_config(
    config_path: Path | None = None,
    environ: dict[str, str] | None = None,
) -> ConfigCheckResult:
    """Validate pipeline configuration and report issues.

    Args:
        config_path: Optional explicit path to deployline.yml.
        environ: Environment mapping used for overrides.

    Returns:
        ConfigCheckResult with validation status and any issues.
    """
    result = ConfigCheckResult()

    if config_path is None:
        config_path = find_config_file()
    if config_path is None:
        result.errors.append("No deployline.yml found.")
        return result
    result.config_path = config_path

    try:
        config = load_config(config_path, environ=environ)
        result.config = config
    except ConfigError as e:
        result.errors.append(str(e))
        return result

    project_root = config_path.parent

    # Build inputs
    context_dir = project_root / config.image.context
    dockerfile = context_dir / config.image.dockerfile
    if not context_dir.is_dir():
        result.errors.append(f"Build context does not exist: {config.image.context}")
    elif not dockerfile.is_file():
        result.errors.append(f"Dockerfile not found: {dockerfile.relative_to(project_root)}")

    # Manifests
    placeholder = config.deployment.image_placeholder
    found_placeholder = False
    for manifest in config.deployment.manifests:
        path = project_root / manifest.path
        if not path.is_file():
            if manifest.optional:
                result.warnings.append(f"Optional manifest not present: {manifest.path}")
            else:
                result.errors.append(f"Manifest not found: {manifest.path}")
            continue
        try:
            if placeholder in path.read_text(encoding="utf-8"):
                found_placeholder = True
        except OSError as e:
            result.errors.append(f"Cannot read manifest {manifest.path}: {e}")

    if not found_placeholder and not result.errors:
        result.warnings.append(
            f"No manifest contains the image placeholder '{placeholder}'. "
            "The run's image will not be bound into the deployment."
        )

    stale = [m.path for m in config.deployment.manifests if (project_root / (m.path + ".bak")).exists()]
    if stale:
        result.warnings.append(
            f"Leftover manifest backups from an interrupted run: {', '.join(stale)}"
        )

    if config.fallback_account_id == DEFAULT_FALLBACK_ACCOUNT:
        result.warnings.append(
            "fallback_account_id is the placeholder account; runs without a live "
            "identity will push to a registry that does not exist."
        )

    if config.rollout.poll_interval > config.rollout.timeout:
        result.warnings.append("rollout.poll_interval exceeds rollout.timeout.")

    result.valid = len(result.errors) == 0
    return result
