"""Remove what a run provisioned: user signups, or tenant workload resources."""

from __future__ import annotations

import logging
from typing import Callable, Iterable


def _purge(items: Iterable[str], delete: Callable[[str], None], kind: str) -> int:
    error_count = 0
    purged = 0
    for item in items:
        try:
            delete(item)
        except Exception as exc:
            logging.error("Error when purging %s %s: %s", kind, item, exc)
            error_count += 1
            continue
        purged += 1
        logging.debug("Finished purging %s %s", kind, item)

    if error_count:
        raise RuntimeError(f"Hit {error_count} errors when purging resources")
    logging.info("No errors when purging resources (%d %s(s) purged)", purged, kind)
    return purged


def purge_users(cluster: object, usernames: Iterable[str]) -> int:
    return _purge(usernames, cluster.delete_user, "user signup")


def purge_namespaces(cluster: object, namespaces: Iterable[str]) -> int:
    """Delete applications and build helpers but keep the users and namespaces."""
    return _purge(namespaces, cluster.delete_namespace_resources, "namespace")
