"""Execution-environment detection for the login flow.

The flow behaves slightly differently when it runs inside an embedded
mini-app host (an in-app browser container) rather than an ordinary
browser: the provider redirect has to come back through a deep link.
Detection is an injected capability resolved once, not probed ad hoc.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from urllib.parse import quote, urlencode

from ..types import HostKind


DEFAULT_MINI_APP_MARKERS: tuple[str, ...] = ("worldapp", "miniapp")


class HostDetector(ABC):
    """Capability that reports which host the client runs in."""

    @abstractmethod
    def detect(self) -> HostKind:
        """Return the current host kind."""


class StaticHostDetector(HostDetector):
    """Detector returning a fixed host kind (ordinary browser by default)."""

    def __init__(self, kind: HostKind = HostKind.BROWSER) -> None:
        self.kind = kind

    def detect(self) -> HostKind:
        return self.kind


class UserAgentHostDetector(HostDetector):
    """Detect a mini-app host from user-agent markers.

    Parameters
    ----------
    user_agent : str
        The user-agent string of the client.
    markers : tuple[str, ...]
        Case-insensitive substrings that identify a mini-app host.
    """

    def __init__(
        self,
        user_agent: str,
        markers: tuple[str, ...] = DEFAULT_MINI_APP_MARKERS,
    ) -> None:
        self.user_agent = user_agent or ""
        self.markers = tuple(m.lower() for m in markers)

    def detect(self) -> HostKind:
        ua = self.user_agent.lower()
        if any(marker in ua for marker in self.markers):
            return HostKind.MINI_APP
        return HostKind.BROWSER


def is_mini_app_request(
    user_agent: str | None,
    is_miniapp_param: str | None = None,
    markers: tuple[str, ...] = DEFAULT_MINI_APP_MARKERS,
) -> bool:
    """Decide whether a server request comes from a mini-app host.

    An explicit ``is_miniapp=true`` query parameter wins; otherwise the
    user agent is inspected.
    """
    if is_miniapp_param == "true":
        return True
    return UserAgentHostDetector(user_agent or "", markers).detect() is HostKind.MINI_APP


def build_mini_app_deep_link(app_id: str, path: str, params: dict[str, str] | None = None) -> str:
    """Build a ``worldapp://`` deep link that reopens the mini app at ``path``.

    Parameters
    ----------
    app_id : str
        The mini-app identifier registered with the host.
    path : str
        Path inside the mini app (e.g. ``/auth/callback``).
    params : dict, optional
        Extra query parameters appended to the link.

    Returns
    -------
    str
        The deep link URL.
    """
    url = f"worldapp://mini-app?app_id={app_id}&path={quote(path, safe='')}"
    if params:
        url = f"{url}&{urlencode(params)}"
    return url
