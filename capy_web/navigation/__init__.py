"""Page visiting: URL policy, robots.txt, rate limiting, fetching, domain adapters.

Exports resolve lazily because the cache and claim graph import
url_tools from this package, while the navigation engine imports them.
"""

import importlib

_EXPORTS = {
    "AdapterRegistry": "capy_web.navigation.adapters",
    "DomainAdapter": "capy_web.navigation.adapters",
    "FetchResult": "capy_web.navigation.fetchers",
    "HttpPageFetcher": "capy_web.navigation.fetchers",
    "BrowsingSession": "capy_web.navigation.navigation_engine",
    "NavigationEngine": "capy_web.navigation.navigation_engine",
    "VisitResult": "capy_web.navigation.navigation_engine",
}


def __getattr__(name):
    if name in _EXPORTS:
        return getattr(importlib.import_module(_EXPORTS[name]), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = list(_EXPORTS)
