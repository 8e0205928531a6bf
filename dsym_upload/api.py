from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable

import requests

from .errors import ApiError
from .models import DSymFile

if TYPE_CHECKING:
    from .xcode import InfoPlist

LOGGER = logging.getLogger(__name__)

API_PREFIX = "api/0"


def _error_detail(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or response.reason
    if isinstance(payload, dict) and payload.get("detail"):
        return str(payload["detail"])
    return str(payload)[:200]


class Api:
    def __init__(
        self,
        *,
        base_url: str,
        auth_token: str | None,
        timeout_sec: int,
        user_agent: str,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent})
        if auth_token:
            self.session.headers["Authorization"] = f"Bearer {auth_token}"

    @classmethod
    def from_config(cls, cfg: dict[str, Any], session: requests.Session | None = None) -> Api:
        server = cfg.get("server") or {}
        return cls(
            base_url=str(server.get("url")),
            auth_token=server.get("auth_token"),
            timeout_sec=int(server.get("timeout_sec", 120)),
            user_agent=str(server.get("user_agent")),
            session=session,
        )

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{API_PREFIX}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        allow_404: bool = False,
        **kwargs: Any,
    ) -> requests.Response | None:
        url = self._url(path)
        LOGGER.debug("%s %s", method, url)
        try:
            response = self.session.request(method, url, timeout=self.timeout_sec, **kwargs)
        except requests.RequestException as exc:
            raise ApiError(f"{method} {url} failed: {exc}") from exc
        if allow_404 and response.status_code == 404:
            return None
        if not response.ok:
            raise ApiError(
                f"{method} {url} returned {response.status_code}: {_error_detail(response)}",
                status_code=response.status_code,
            )
        return response

    def find_missing_dsym_checksums(self, org: str, project: str, checksums: Iterable[str]) -> set[str]:
        params = [("checksums", checksum) for checksum in checksums]
        response = self._request("GET", f"projects/{org}/{project}/files/dsyms/unknown/", params=params)
        return set(response.json().get("missing") or [])

    def upload_dsyms(self, org: str, project: str, bundle_path: Path) -> list[DSymFile]:
        bundle_path = Path(bundle_path)
        with bundle_path.open("rb") as handle:
            response = self._request(
                "POST",
                f"projects/{org}/{project}/files/dsyms/",
                files={"file": (bundle_path.name, handle, "application/zip")},
            )
        return [DSymFile.from_json(item) for item in response.json()]

    def associate_dsyms(
        self,
        org: str,
        project: str,
        info_plist: InfoPlist,
        checksums: list[str],
    ) -> list[Any] | None:
        """Associate checksums with a build; ``None`` if the server lacks support."""
        response = self._request(
            "POST",
            f"projects/{org}/{project}/files/dsyms/associate/",
            allow_404=True,
            json={
                "checksums": checksums,
                "platform": "apple",
                "name": info_plist.name,
                "appId": info_plist.bundle_id,
                "version": info_plist.version,
                "build": info_plist.build,
            },
        )
        if response is None:
            return None
        return list(response.json().get("associatedDsymFiles") or [])

    def trigger_reprocessing(self, org: str, project: str) -> bool:
        response = self._request("POST", f"projects/{org}/{project}/reprocessing/", allow_404=True)
        return response is not None
