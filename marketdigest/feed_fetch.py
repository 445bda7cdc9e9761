from __future__ import annotations

import requests

DEFAULT_USER_AGENT = "Mozilla/5.0 (GitHubActions; MarketDigestBot/1.0)"
DEFAULT_TIMEOUT_S = 20.0


class FetchError(RuntimeError):
    """Network or HTTP failure for a single URL."""

    def __init__(self, message: str, *, url: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = int(status_code) if isinstance(status_code, int) else None


def fetch_response(
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT_S,
    user_agent: str = DEFAULT_USER_AGENT,
    session: requests.Session | None = None,
) -> requests.Response:
    """GET *url* once with the identifying User-Agent.

    Raises FetchError on connection errors, timeouts and non-2xx responses.
    No retries.
    """
    getter = session.get if session is not None else requests.get
    try:
        resp = getter(url, timeout=timeout, headers={"User-Agent": user_agent})
    except requests.Timeout as e:
        raise FetchError(f"Fetch timed out after {timeout:g}s: {url}", url=url) from e
    except requests.RequestException as e:
        raise FetchError(f"Fetch failed: {url}: {e}", url=url) from e

    status = int(resp.status_code)
    if not 200 <= status < 300:
        raise FetchError(f"Fetch failed {status}: {url}", url=url, status_code=status)
    return resp


def fetch_text(
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT_S,
    user_agent: str = DEFAULT_USER_AGENT,
    session: requests.Session | None = None,
) -> str:
    """Like fetch_response() but returns the decoded body."""
    resp = fetch_response(url, timeout=timeout, user_agent=user_agent, session=session)
    return response_text(resp)


def response_text(resp: requests.Response) -> str:
    # Servers that omit charset get ISO-8859-1 from requests; most Korean
    # feeds are UTF-8 in that case.
    enc = resp.encoding
    if enc is None or str(enc).lower() == "iso-8859-1":
        if "charset" not in str(resp.headers.get("Content-Type") or "").lower():
            resp.encoding = resp.apparent_encoding or "utf-8"
    return resp.text
