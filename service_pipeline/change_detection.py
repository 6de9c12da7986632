"""
Change detection: which registry services does a change set touch?
"""

from collections.abc import Iterable, Sequence

import structlog

logger = structlog.get_logger(__name__)


def detect_affected_services(
    registry: Sequence[str], changed_paths: Iterable[str]
) -> tuple[str, ...] | None:
    """
    Return the services with at least one changed path under their directory.

    A service ``s`` is affected when some path starts with ``s + "/"``. The
    result keeps registry order so downstream stages run in a reproducible
    order.

    Args:
        registry: Ordered service identifiers (must not be empty)
        changed_paths: Paths from the revision diff (may be empty)

    Returns:
        Affected services in registry order, or None when nothing relevant changed

    Raises:
        ValueError: If the registry is empty

    Example:
        >>> detect_affected_services(["a", "b"], {"a/src/x.txt"})
        ('a',)
        >>> detect_affected_services(["a", "b"], {"c/file.txt"}) is None
        True
    """
    if not registry:
        raise ValueError("registry must not be empty")

    paths = list(changed_paths)
    affected = tuple(
        service
        for service in registry
        if any(path.startswith(f"{service}/") for path in paths)
    )

    logger.debug(
        "affected_services_detected",
        changed_paths=len(paths),
        affected=list(affected),
    )

    return affected or None
