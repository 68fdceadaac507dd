"""HTTP session factory for Flink JobManager REST endpoints.

Every `FlinkRestClient` owns one session built here. Sessions speak JSON,
retry transient failures of idempotent requests with exponential backoff, and
hand the final response back instead of raising once retries are exhausted,
so callers can report the JobManager's own error body.
"""

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_FACTOR = 1.0
DEFAULT_STATUS_FORCELIST = [429, 500, 502, 503, 504]
# POST is excluded: a replayed savepoint trigger starts a second savepoint
DEFAULT_ALLOWED_METHODS = ["GET", "PATCH"]
DEFAULT_USER_AGENT = "flink-application-operator"
JSON_HEADERS = {"Accept": "application/json", "Content-Type": "application/json"}


def create_retry_session(
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    status_forcelist: list[int] | None = None,
    allowed_methods: list[str] | None = None,
    user_agent: str = DEFAULT_USER_AGENT,
) -> requests.Session:
    """Create a JSON session with retries for one JobManager.

    Args:
        max_retries: Maximum number of retry attempts.
        backoff_factor: Base backoff time in seconds.
        status_forcelist: Status codes that trigger a retry
            (default: 429 and the 5xx gateway family).
        allowed_methods: Methods allowed to retry (default: GET, PATCH).
        user_agent: `User-Agent` sent with every request.

    Returns:
        Configured `requests.Session`.

    Example:
        ```python
        session = create_retry_session(max_retries=5)
        response = session.get("http://my-app-rest.flink:8081/jobs/overview")
        ```
    """
    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=status_forcelist or DEFAULT_STATUS_FORCELIST,
        allowed_methods=allowed_methods or DEFAULT_ALLOWED_METHODS,
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)

    session = requests.Session()
    session.headers.update(JSON_HEADERS)
    session.headers["User-Agent"] = user_agent
    for prefix in ("http://", "https://"):
        session.mount(prefix, adapter)
    return session
