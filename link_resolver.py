import logging
import requests
from typing import Optional, Tuple, Final, FrozenSet
from urllib.parse import urljoin, urlsplit, parse_qs
from common_objects import ResolutionFailed

logger = logging.getLogger(__name__)

MAX_REDIRECTS: Final[int] = 10
REQUEST_TIMEOUT: Final[int] = 30
TRANSIENT_STATUSES: Final[FrozenSet[int]] = frozenset({429, 502, 503, 504})
DEFAULT_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36',
}

def extract_payload(url: str, param: str = "lin") -> Optional[str]:
    """
    :param url: A BBO hand viewer URL such as https://www.bridgebase.com/tools/handviewer.html?lin=pn|...
    :return: The percent-decoded value of the payload parameter, or None if absent
    :raises ResolutionFailed: for a URL that cannot be parsed at all
    """
    try:
        values = parse_qs(urlsplit(url.strip()).query).get(param)
    except ValueError as e:
        raise ResolutionFailed(f"Malformed URL {url}: {e}") from e
    if not values or not values[0]:
        return None
    return values[0]

class LinkResolver:
    """
    Follows a shortened link (tinyurl and similar) to the hand viewer URL it points at.
    No retry logic lives here; FetchScheduler owns the retry policy.
    """

    def __init__(self, session: Optional[requests.Session] = None, max_redirects: int = MAX_REDIRECTS,
                 timeout: int = REQUEST_TIMEOUT, param: str = "lin"):
        self.session = session if session is not None else requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)
        self.max_redirects = max_redirects
        self.timeout = timeout
        self.param = param

    def resolve(self, short_url: str) -> Tuple[str, str]:
        """
        :return: (final URL, decoded payload)
        :raises ResolutionFailed: transient for timeouts and 429/5xx throttling, otherwise permanent
        """
        current_url = short_url.strip()
        redirects = 0
        while True:
            payload = extract_payload(current_url, self.param)
            if payload is not None:
                return current_url, payload
            response = self._get(current_url)
            status = response.status_code
            if status in TRANSIENT_STATUSES:
                raise ResolutionFailed(f"HTTP {status} from {current_url}", transient=True, status=status)
            if 300 <= status < 400:
                location = response.headers.get("Location")
                if not location:
                    raise ResolutionFailed(f"HTTP {status} without Location from {current_url}", status=status)
                redirects += 1
                if redirects > self.max_redirects:
                    raise ResolutionFailed(f"Too many redirects resolving {short_url}", status=status)
                try:
                    current_url = urljoin(current_url, location)
                except ValueError as e:
                    raise ResolutionFailed(f"Malformed Location {location} from {current_url}: {e}", status=status) from e
                logger.debug(f"Redirect {redirects}: {current_url}")
                continue
            if status >= 400:
                raise ResolutionFailed(f"HTTP {status} from {current_url}", status=status)
            raise ResolutionFailed(f"No {self.param} parameter in {current_url}", status=status)

    def _get(self, url: str) -> requests.Response:
        try:
            return self.session.get(url, allow_redirects=False, timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise ResolutionFailed(f"Request to {url} failed: {e}", transient=True) from e
        except requests.RequestException as e:
            raise ResolutionFailed(f"Request to {url} failed: {e}") from e
