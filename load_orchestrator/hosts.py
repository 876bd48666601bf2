"""Target URL parsing and host allow-listing."""

from collections.abc import Collection

from yarl import URL

from load_orchestrator.errors import InvalidTargetError

SUPPORTED_SCHEMES = frozenset(["http", "https"])


def parse_target(target: str) -> URL:
    """Parse an absolute http(s) URL with a host.

    Raises:
        InvalidTargetError: If the URL cannot be used as a load target

    """
    try:
        url = URL(target)
    except (TypeError, ValueError) as exc:
        raise InvalidTargetError(f"invalid target url: {exc}") from exc

    if url.scheme not in SUPPORTED_SCHEMES:
        raise InvalidTargetError(
            f"invalid target url: unsupported scheme {url.scheme!r}"
        )
    if not url.host:
        raise InvalidTargetError(f"invalid target url: no host in {target!r}")
    return url


def is_host_allowed(
    target: str, *, allow_all: bool, allowed_hosts: Collection[str]
) -> bool:
    """Check a target against the allow-list, failing closed."""
    if allow_all:
        return True
    try:
        url = URL(target)
    except (TypeError, ValueError):
        return False
    return url.host is not None and url.host in allowed_hosts
