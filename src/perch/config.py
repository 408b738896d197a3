"""Router configuration.

RouterConfig is a frozen dataclass — immutable after creation, IDE-autocompletable,
no string-key dict lookups.
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RouterConfig:
    """Router configuration. Immutable after creation.

    All fields have sensible defaults. Override what you need::

        config = RouterConfig(prefetch_concurrency=2, snapshot_ttl=60.0)
    """

    # Tree conventions
    private_prefix: str = "_"

    # Metadata
    default_title: str = ""
    title_placeholder: str = "%s"
    inject_head: bool = True

    # Rendering
    stream_placeholder_prefix: str = "perch-s-"
    not_found_html: str = "<h1>404</h1><p>This page could not be found.</p>"
    error_html: str = "<h1>500</h1><p>Something went wrong.</p>"
    debug: bool = False  # Include error details in the generic failure page

    # Client navigation
    prefetch_concurrency: int = 4
    prefetch_ttl: float = 30.0  # seconds
    prefetch_cache_size: int = 32
    snapshot_ttl: float = 300.0  # seconds a history snapshot may be reused
    history_limit: int = 50
    max_redirects: int = 5
