"""
Frame.io V4 API client (aiohttp)

First Principles:
- Credentials are an explicit Session value; refresh returns a new one
- 401/403 means the credentials are bad (AuthError), anything else is an API error
- Every call takes the session it should use, so nothing is mutated behind the caller
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import aiohttp

from commentsync.core.exceptions import (
    AuthError,
    NoProxyError,
    PlatformAPIError,
    TransferAPIError,
    VersionStackError,
)
from commentsync.models.frames import SourceComment


PROXY_PREFERENCE = ("efficient", "high_quality", "video_h264_720")


@dataclass(frozen=True)
class Session:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: float = 0.0  # epoch seconds, 0 = unknown

    def expires_within(self, seconds: float, now: Optional[float] = None) -> bool:
        if not self.expires_at:
            return False
        return (now if now is not None else time.time()) + seconds >= self.expires_at


def _media_link_url(link) -> Optional[str]:
    if isinstance(link, str):
        return link or None
    if isinstance(link, dict):
        return link.get("download_url") or link.get("url")
    return None


class FrameioClient:
    """
    Usage:
        async with FrameioClient(base_url, token_url, client_id, client_secret) as client:
            session = await client.ensure_fresh(session)
            url = await client.resolve_proxy_url(session, account_id, file_id)
    """

    def __init__(
        self,
        base_url: str = "https://api.frame.io/v4",
        token_url: str = "https://ims-na1.adobelogin.com/ims/token/v3",
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: int = 60,
        refresh_margin_seconds: int = 60,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.refresh_margin_seconds = refresh_margin_seconds
        self._http: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "FrameioClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _client(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(timeout=self.timeout)
        return self._http

    async def close(self) -> None:
        if self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    # =========================================================================
    # AUTH
    # =========================================================================

    async def refresh_session(self, session: Session) -> Session:
        """Exchange the refresh token for a new Session (old refresh token kept if none returned)."""
        if not session.refresh_token:
            raise AuthError("Access token expired and no refresh token is available")

        form = {
            "grant_type": "refresh_token",
            "client_id": self.client_id or "",
            "client_secret": self.client_secret or "",
            "refresh_token": session.refresh_token,
        }
        try:
            async with self._client().post(self.token_url, data=form) as response:
                payload = await response.json(content_type=None) or {}
                if response.status != 200:
                    detail = payload.get("error_description") or "Failed to refresh token"
                    raise AuthError(f"{detail} (HTTP {response.status})")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AuthError(f"Token refresh failed: {e}") from e
        except ValueError as e:
            raise AuthError(f"Token refresh returned invalid JSON: {e}") from e

        if not payload.get("access_token"):
            raise AuthError("Token refresh response had no access_token")

        expires_in = payload.get("expires_in")
        print("   ✓ Refreshed access token")
        return Session(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or session.refresh_token,
            expires_at=time.time() + float(expires_in) if expires_in else 0.0,
        )

    async def ensure_fresh(self, session: Session) -> Session:
        """Return the same session, or a refreshed one if it expires within the margin."""
        if session.expires_within(self.refresh_margin_seconds):
            return await self.refresh_session(session)
        return session

    # =========================================================================
    # REQUESTS
    # =========================================================================

    async def _request(self, session: Session, method: str, path: str, error_cls=PlatformAPIError, **kwargs) -> dict:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {session.access_token}"}
        try:
            async with self._client().request(method, url, headers=headers, **kwargs) as response:
                if response.status in (401, 403):
                    raise AuthError(f"Frame.io rejected credentials (HTTP {response.status}) for {method} {path}")
                if response.status >= 400:
                    body = (await response.text())[:300]
                    raise error_cls(f"HTTP {response.status} for {method} {path}: {body}", status=response.status)
                return await response.json(content_type=None) or {}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise error_cls(f"{method} {path} failed: {e}") from e
        except ValueError as e:
            raise error_cls(f"{method} {path} returned invalid JSON: {e}") from e

    async def get_file(self, session: Session, account_id: str, file_id: str) -> dict:
        include = ",".join(f"media_links.{name}" for name in PROXY_PREFERENCE)
        response = await self._request(
            session, "GET", f"/accounts/{account_id}/files/{file_id}", params={"include": include},
        )
        return response.get("data", response)

    async def resolve_proxy_url(self, session: Session, account_id: str, file_id: str, label: str = "File") -> str:
        """
        Download URL of the file's proxy rendition.

        Raises:
            NoProxyError: no efficient (or fallback) proxy is available
        """
        file_data = await self.get_file(session, account_id, file_id)
        media_links = file_data.get("media_links") or {}
        for name in PROXY_PREFERENCE:
            url = _media_link_url(media_links.get(name))
            if url:
                if name != "efficient":
                    print(f"   ⚠️ {label} has no efficient proxy, using {name}")
                return url
        raise NoProxyError(f"{label} file has no efficient proxy available")

    # =========================================================================
    # VERSION STACKS
    # =========================================================================

    async def get_version_stack(self, session: Session, account_id: str, stack_id: str) -> dict:
        response = await self._request(session, "GET", f"/accounts/{account_id}/version_stacks/{stack_id}")
        return response.get("data", response)

    async def list_version_stack_children(self, session: Session, account_id: str, stack_id: str) -> List[dict]:
        response = await self._request(
            session, "GET", f"/accounts/{account_id}/version_stacks/{stack_id}/children",
        )
        return response.get("data") or []

    async def find_version_stack(self, session: Session, account_id: str, file_id: str) -> dict:
        """
        The version stack a file belongs to (its parent, which must have
        type "version_stack").

        Raises:
            VersionStackError: the file has no parent, or its parent is not a stack
        """
        file_data = await self.get_file(session, account_id, file_id)
        parent_id = file_data.get("parent_id")
        if not parent_id:
            raise VersionStackError(f"File {file_id} is not part of a version stack (no parent)")

        try:
            parent = await self.get_version_stack(session, account_id, parent_id)
        except PlatformAPIError:
            # The parent may only be reachable as a file
            parent = await self.get_file(session, account_id, parent_id)

        if parent.get("type") != "version_stack":
            raise VersionStackError(f"Parent of file {file_id} is not a version stack")
        return parent

    async def validate_version_stack(
        self,
        session: Session,
        account_id: str,
        source_file_id: str,
        target_file_id: str,
    ) -> Dict[str, object]:
        """
        Check that source and target are versions in the same stack.

        Returns:
            {"version_stack": <stack>, "versions": [<child files>]}

        Raises:
            VersionStackError: either file is outside a stack, or the stacks differ
        """
        source_stack = await self.find_version_stack(session, account_id, source_file_id)
        target_stack = await self.find_version_stack(session, account_id, target_file_id)
        if source_stack.get("id") != target_stack.get("id"):
            raise VersionStackError("Files are not in the same version stack")

        versions = await self.list_version_stack_children(session, account_id, source_stack["id"])
        print(f"   ✓ Version stack {source_stack['id']}: {len(versions)} versions")
        return {"version_stack": source_stack, "versions": versions}

    # =========================================================================
    # COMMENTS
    # =========================================================================

    async def list_comments(self, session: Session, account_id: str, file_id: str) -> List[SourceComment]:
        """All comments on a file, following pagination. Comments without a frame are dropped."""
        comments: List[SourceComment] = []
        next_path: Optional[str] = f"/accounts/{account_id}/files/{file_id}/comments"
        while next_path:
            response = await self._request(session, "GET", next_path)
            for item in response.get("data", []):
                frame = item.get("timestamp")
                if frame is None:
                    continue
                comments.append(SourceComment(
                    id=str(item.get("id")),
                    text=item.get("text") or "",
                    frame_number=int(frame),
                ))
            next_path = (response.get("links") or {}).get("next")
        return comments

    async def create_comment(
        self,
        session: Session,
        account_id: str,
        file_id: str,
        text: str,
        frame_number: int,
    ) -> str:
        """
        Create a comment and return its id.

        Raises:
            TransferAPIError: the platform rejected this comment
            AuthError: credentials are no longer valid
        """
        response = await self._request(
            session,
            "POST",
            f"/accounts/{account_id}/files/{file_id}/comments",
            error_cls=TransferAPIError,
            json={"data": {"text": text, "timestamp": frame_number}},
        )
        data = response.get("data", response)
        return str(data.get("id", ""))
