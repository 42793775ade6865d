"""
AWS adapter — caller identity, ECR and EKS operations.

Wraps the aws CLI v2. Every call is region-scoped and returns JSON or
plain text on stdout; parsing is left to the calling stage.
"""

from __future__ import annotations

import logging

from deployline.adapters.base import CommandAdapter

logger = logging.getLogger(__name__)


class AwsAdapter(CommandAdapter):
    """AWS CLI operations.

    Action operations and params:
        caller-identity        region                  → JSON {Account, Arn, UserId}
        ecr-login-password     region                  → registry password
        ecr-describe-repository  repository, region    → JSON repositories list
        ecr-create-repository    repository, region, scan_on_push (bool)
        eks-update-kubeconfig    cluster, region, kubeconfig, alias
    """

    binary = "aws"
    required_params = {
        "caller-identity": (),
        "ecr-login-password": ("region",),
        "ecr-describe-repository": ("repository", "region"),
        "ecr-create-repository": ("repository", "region"),
        "eks-update-kubeconfig": ("cluster", "region", "kubeconfig"),
    }

    def _op_caller_identity(self, params: dict) -> tuple[list[str], str | None]:
        args = ["sts", "get-caller-identity", "--output", "json"]
        if params.get("region"):
            args.extend(["--region", params["region"]])
        return args, None

    def _op_ecr_login_password(self, params: dict) -> tuple[list[str], str | None]:
        return ["ecr", "get-login-password", "--region", params["region"]], None

    def _op_ecr_describe_repository(self, params: dict) -> tuple[list[str], str | None]:
        return [
            "ecr", "describe-repositories",
            "--repository-names", params["repository"],
            "--region", params["region"],
            "--output", "json",
        ], None

    def _op_ecr_create_repository(self, params: dict) -> tuple[list[str], str | None]:
        scan = "true" if params.get("scan_on_push", True) else "false"
        return [
            "ecr", "create-repository",
            "--repository-name", params["repository"],
            "--region", params["region"],
            "--image-scanning-configuration", f"scanOnPush={scan}",
            "--output", "json",
        ], None

    def _op_eks_update_kubeconfig(self, params: dict) -> tuple[list[str], str | None]:
        args = [
            "eks", "update-kubeconfig",
            "--name", params["cluster"],
            "--region", params["region"],
            "--kubeconfig", str(params["kubeconfig"]),
        ]
        if params.get("alias"):
            args.extend(["--alias", params["alias"]])
        return args, None
