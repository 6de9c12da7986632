"""
Image tag resolution.

Two policies:
- main: the source-control tag containing HEAD, else "latest"
- branch: the short revision identifier of HEAD
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum

LATEST_TAG = "latest"


class TagPolicy(str, Enum):
    MAIN = "main"
    BRANCH = "branch"

    @classmethod
    def for_branch(cls, branch: str, main_branch: str) -> TagPolicy:
        """Derive the policy from the branch being built."""
        return cls.MAIN if branch == main_branch else cls.BRANCH


def resolve_tag(
    policy: TagPolicy,
    short_revision: str,
    tags_on_head: Sequence[str] = (),
) -> str:
    """
    Resolve the image tag for a run.

    Args:
        policy: Tag policy in force
        short_revision: Short identifier of the head revision
        tags_on_head: Source-control tags containing the head revision, in the
            order the source-control tool listed them

    Returns:
        The tag to publish images under

    Raises:
        ValueError: If the branch policy has no revision to tag with
    """
    if policy is TagPolicy.MAIN:
        for tag in tags_on_head:
            if tag.strip():
                return tag.strip()
        return LATEST_TAG

    if not short_revision.strip():
        raise ValueError("branch tag policy needs a short revision")
    return short_revision.strip()
