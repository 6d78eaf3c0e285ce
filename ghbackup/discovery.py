"""Repository discovery from a GitHub account.

Owned and starred repositories are listed concurrently, one paginating task per
listing. All tasks push clone URLs onto a single shared queue; a coordinator
closes the queue once every task has finished, and the caller drains it into
the registry's known set so that only one thread ever writes to the store.
"""

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, List, Optional
from urllib.parse import parse_qs, urlsplit

import httpx

from ghbackup.registry import Registry, RegistryError

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
DEFAULT_TIMEOUT = 30.0

OWNED_REPOS_ENDPOINT = "/user/repos"
STARRED_REPOS_ENDPOINT = "/user/starred"

_CLOSED = object()


def github_headers(token: str) -> dict[str, str]:
    """Standard GitHub API headers.

    Args:
        token: OAuth access token

    Returns:
        Dictionary of headers for GitHub API requests
    """
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": "ghbackup",
    }


def github_client(
    token: str,
    *,
    base_url: str = GITHUB_API_BASE,
    timeout: float = DEFAULT_TIMEOUT,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """Create a sync Client with standard GitHub headers and base_url.

    Example:
        with github_client(token) as gh:
            discover(gh, registry, want_owned=True, want_starred=False)
    """
    return httpx.Client(
        base_url=base_url,
        headers=github_headers(token),
        timeout=timeout,
        follow_redirects=True,
        transport=transport,
    )


def next_page(response: httpx.Response) -> int:
    """Page number advertised by the Link header, 0 when there is none."""
    link = response.links.get("next")
    if not link or not link.get("url"):
        return 0
    pages = parse_qs(urlsplit(link["url"]).query).get("page")
    try:
        return int(pages[0]) if pages else 0
    except ValueError:
        return 0


def paginate_repositories(client: httpx.Client, endpoint: str, emit: Callable[[str], None]) -> int:
    """Walk every page of a repository listing, emitting each SSH clone URL.

    A failed request ends the walk early; whatever was emitted so far stands.

    Returns:
        Number of clone URLs emitted
    """
    emitted = 0
    page = 1
    while page:
        try:
            response = client.get(endpoint, params={"page": page})
            response.raise_for_status()
            repos = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Listing {endpoint} page {page} failed: {e}")
            return emitted

        for repo in repos:
            ssh_url = repo.get("ssh_url") if isinstance(repo, dict) else None
            if not ssh_url:
                logger.warning(f"Skipping entry without ssh_url in {endpoint}")
                continue
            emit(ssh_url)
            emitted += 1

        page = next_page(response)

    logger.info(f"Listed {emitted} repositories from {endpoint}")
    return emitted


def _close_when_done(futures, found: queue.Queue) -> None:
    wait(futures)
    found.put(_CLOSED)


def discover(client: httpx.Client, registry: Registry, want_owned: bool, want_starred: bool) -> int:
    """Add the user's owned and/or starred repositories to the known set.

    Args:
        client: Authorized GitHub API client
        registry: Registry receiving the discovered refs
        want_owned: List repositories owned by the user
        want_starred: List repositories starred by the user

    Returns:
        Number of refs written to the registry
    """
    endpoints: List[str] = []
    if want_owned:
        endpoints.append(OWNED_REPOS_ENDPOINT)
    if want_starred:
        endpoints.append(STARRED_REPOS_ENDPOINT)
    if not endpoints:
        return 0

    found: queue.Queue = queue.Queue()
    added = 0

    with ThreadPoolExecutor(max_workers=len(endpoints), thread_name_prefix="discovery") as pool:
        futures = [pool.submit(paginate_repositories, client, endpoint, found.put) for endpoint in endpoints]
        coordinator = threading.Thread(target=_close_when_done, args=(futures, found), daemon=True)
        coordinator.start()

        for ref in iter(found.get, _CLOSED):
            try:
                registry.add_known(ref)
                added += 1
            except (RegistryError, ValueError) as e:
                logger.error(f"Error saving {ref} to registry: {e}")

        coordinator.join()

    for future in futures:
        if future.exception() is not None:
            logger.error(f"Discovery task failed: {future.exception()}")

    logger.info(f"Discovery finished: {added} repositories recorded")
    return added
