"""
Docker adapter — image build, tagging and registry operations.

Uses the docker CLI — never the Docker API directly.
"""

from __future__ import annotations

import logging

from deployline.adapters.base import CommandAdapter

logger = logging.getLogger(__name__)


class DockerAdapter(CommandAdapter):
    """Docker image operations.

    Action operations and params:
        build    image, context, dockerfile, build_args (dict), labels (dict)
        inspect  image                       → output is the image id
        tag      source, target
        login    registry, username, password (sent on stdin)
        push     image
        rmi      images (list), force (bool)
    """

    binary = "docker"
    required_params = {
        "build": ("image", "context"),
        "inspect": ("image",),
        "tag": ("source", "target"),
        "login": ("registry", "password"),
        "push": ("image",),
        "rmi": ("images",),
        "version": (),
    }

    def _op_build(self, params: dict) -> tuple[list[str], str | None]:
        args = ["build", "-t", params["image"]]
        if params.get("dockerfile"):
            args.extend(["-f", params["dockerfile"]])
        for key, value in (params.get("build_args") or {}).items():
            args.extend(["--build-arg", f"{key}={value}"])
        for key, value in (params.get("labels") or {}).items():
            args.extend(["--label", f"{key}={value}"])
        args.append(params["context"])
        return args, None

    def _op_inspect(self, params: dict) -> tuple[list[str], str | None]:
        return ["image", "inspect", "--format", "{{.Id}}", params["image"]], None

    def _op_tag(self, params: dict) -> tuple[list[str], str | None]:
        return ["tag", params["source"], params["target"]], None

    def _op_login(self, params: dict) -> tuple[list[str], str | None]:
        args = [
            "login",
            "--username", params.get("username", "AWS"),
            "--password-stdin",
            params["registry"],
        ]
        return args, params["password"]

    def _op_push(self, params: dict) -> tuple[list[str], str | None]:
        return ["push", params["image"]], None

    def _op_rmi(self, params: dict) -> tuple[list[str], str | None]:
        args = ["rmi"]
        if params.get("force"):
            args.append("--force")
        args.extend(params["images"])
        return args, None

    def _op_version(self, params: dict) -> tuple[list[str], str | None]:
        return ["--version"], None
