"""
Logical upstream endpoints.

The upstream API is inconsistent: most endpoints wrap their payload in
``{"status": "Ok", "data": ...}`` while listing endpoints return their list
and pagination fields at the top level. Which is which is recorded here per
endpoint name and must not be guessed from the payload.
"""

from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from streamgate.services.errors import MalformedPayloadError

LISTING_TTL = 300  # frequently changing listings
DETAIL_TTL = 600
REFERENCE_TTL = 3600  # static reference data


@dataclass(frozen=True)
class EndpointSpec:
    """How to call, normalize, cache and fall back for one logical endpoint."""

    name: str
    path: str
    unwrap: bool
    ttl: int
    snapshot: str | None = None

    @property
    def path_params(self) -> list[str]:
        return [
            segment[1:-1]
            for segment in self.path.split("/")
            if segment.startswith("{") and segment.endswith("}")
        ]


ENDPOINTS: dict[str, EndpointSpec] = {
    spec.name: spec
    for spec in (
        EndpointSpec("home", "/home", True, DETAIL_TTL, "v1_home.json"),
        EndpointSpec(
            "ongoing-anime",
            "/ongoing-anime/{page}",
            False,
            LISTING_TTL,
            "v1_ongoing-anime_page.json",
        ),
        EndpointSpec(
            "complete-anime",
            "/complete-anime/{page}",
            False,
            LISTING_TTL,
            "v1_complete-anime_page.json",
        ),
        EndpointSpec("movies", "/movies/{page}", False, DETAIL_TTL),
        EndpointSpec(
            "movie-detail", "/movies/{year}/{month}/{slug}", False, DETAIL_TTL
        ),
        EndpointSpec(
            "anime-detail", "/anime/{slug}", True, DETAIL_TTL, "v1_anime_slug.json"
        ),
        EndpointSpec(
            "anime-episodes",
            "/anime/{slug}/episodes",
            True,
            DETAIL_TTL,
            "v1_anime_slug_episodes.json",
        ),
        EndpointSpec(
            "episode-detail",
            "/anime/{slug}/episodes/{episode}",
            True,
            DETAIL_TTL,
            "v1_episode_slug.json",
        ),
        EndpointSpec(
            "search",
            "/search/{keyword}",
            False,
            LISTING_TTL,
            "v1_search_keyword.json",
        ),
        EndpointSpec("genres", "/genres", True, REFERENCE_TTL, "v1_genres.json"),
        EndpointSpec("genre-anime", "/genres/{slug}/{page}", False, DETAIL_TTL),
    )
}


def get_endpoint(name: str) -> EndpointSpec:
    """Look up a logical endpoint. Raises KeyError for unknown names."""
    try:
        return ENDPOINTS[name]
    except KeyError:
        raise KeyError(f"Unknown logical endpoint: {name}") from None


def effective_params(
    spec: EndpointSpec, params: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Copy of params with defaults applied; 'page' is 1 when the path needs it."""
    params = dict(params or {})
    if "page" in spec.path_params and params.get("page") in (None, ""):
        params["page"] = 1
    return params


def build_request(
    spec: EndpointSpec, params: dict[str, Any] | None = None
) -> tuple[str, dict[str, Any]]:
    """
    Fill the path template from params.

    Returns:
        (path, query) where query holds the params the path did not consume
    """
    params = effective_params(spec, params)

    missing = [name for name in spec.path_params if params.get(name) in (None, "")]
    if missing:
        raise ValueError(f"Endpoint '{spec.name}' requires {', '.join(missing)}")

    path = spec.path
    for name in spec.path_params:
        path = path.replace(f"{{{name}}}", quote(str(params.pop(name)), safe=""))
    return path, params


def normalize(spec: EndpointSpec, body: Any) -> Any:
    """Turn an upstream body into the shape callers expect."""
    if not isinstance(body, dict) or body.get("status") != "Ok":
        raise MalformedPayloadError(
            f"Invalid API response format for '{spec.name}'", service_id=spec.name
        )
    if spec.unwrap:
        return body.get("data")
    return body


def normalize_snapshot(spec: EndpointSpec, document: Any) -> Any:
    """Apply the same shape rules to a snapshot document, without the status check."""
    if spec.unwrap and isinstance(document, dict) and "data" in document:
        return document["data"]
    return document
