"""
Git adapter — revision lookup for the source checkout.

Uses the git CLI — never raw API calls.
"""

from __future__ import annotations

import logging

from deployline.adapters.base import CommandAdapter

logger = logging.getLogger(__name__)


class GitAdapter(CommandAdapter):
    """Git read-only operations.

    Action operations:
        rev-parse   ref (default: HEAD)   → full commit hash
        status                            → porcelain status (empty when clean)
    """

    binary = "git"
    required_params = {
        "rev-parse": (),
        "status": (),
    }

    def _op_rev_parse(self, params: dict) -> tuple[list[str], str | None]:
        return ["rev-parse", params.get("ref") or "HEAD"], None

    def _op_status(self, params: dict) -> tuple[list[str], str | None]:
        return ["status", "--porcelain"], None
