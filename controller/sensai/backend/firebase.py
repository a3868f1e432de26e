"""Firebase REST clients: anonymous/custom-token auth and the per-user session document."""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from ..config import Settings
from .firestore_codec import decode_fields, encode_value

logger = logging.getLogger(__name__)

AuthListener = Callable[[Optional[str]], Awaitable[None]]

# refresh slightly before Firebase's one hour expiry
_TOKEN_REFRESH_MARGIN_SECONDS = 60.0


@dataclass
class AuthToken:
    user_id: str
    id_token: str
    refresh_token: Optional[str] = None
    expires_at: float = 0.0

    @property
    def expiring(self) -> bool:
        return time.time() >= self.expires_at - _TOKEN_REFRESH_MARGIN_SECONDS


class FirebaseAuthClient:
    """Thin wrapper around the Identity Toolkit and Secure Token endpoints."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings
        self._client = client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    async def sign_in_anonymously(self) -> Optional[AuthToken]:
        url = f"{self.settings.firebase.auth_url}/accounts:signUp"
        return await self._exchange("sign_in_anonymously", url, {"returnSecureToken": True})

    async def sign_in_with_custom_token(self, token: str) -> Optional[AuthToken]:
        url = f"{self.settings.firebase.auth_url}/accounts:signInWithCustomToken"
        return await self._exchange("sign_in_custom", url, {"token": token, "returnSecureToken": True})

    async def refresh(self, refresh_token: str) -> Optional[AuthToken]:
        url = f"{self.settings.firebase.token_url}/token"
        try:
            response = await self._client.post(
                url,
                params={"key": self.settings.firebase.api_key},
                data={"grant_type": "refresh_token", "refresh_token": refresh_token},
            )
            response.raise_for_status()
            data = response.json()
            return AuthToken(
                user_id=data["user_id"],
                id_token=data["id_token"],
                refresh_token=data.get("refresh_token", refresh_token),
                expires_at=time.time() + float(data.get("expires_in", 3600)),
            )
        except httpx.HTTPStatusError as e:
            logger.error("firebase.refresh: HTTP %d - %s", e.response.status_code, e.response.text)
        except httpx.HTTPError as e:
            logger.error("firebase.refresh: transport error - %s", e)
        except (KeyError, ValueError) as e:
            logger.error("firebase.refresh: malformed response - %s", e)
        return None

    async def _exchange(self, label: str, url: str, payload: Dict[str, Any]) -> Optional[AuthToken]:
        try:
            response = await self._client.post(url, params={"key": self.settings.firebase.api_key}, json=payload)
            response.raise_for_status()
            data = response.json()
            return AuthToken(
                user_id=data["localId"],
                id_token=data["idToken"],
                refresh_token=data.get("refreshToken"),
                expires_at=time.time() + float(data.get("expiresIn", 3600)),
            )
        except httpx.TimeoutException:
            logger.error("firebase.%s: request timeout", label)
        except httpx.HTTPStatusError as e:
            logger.error("firebase.%s: HTTP %d - %s", label, e.response.status_code, e.response.text)
        except httpx.HTTPError as e:
            logger.error("firebase.%s: network error - %s", label, e)
        except (KeyError, ValueError) as e:
            logger.error("firebase.%s: malformed response - %s", label, e)
        return None

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing auth HTTP client: %s", e)


class AuthSession:
    """Keeps a signed-in Firebase user, signing in again whenever the session is lost."""

    def __init__(
        self,
        client: FirebaseAuthClient,
        *,
        initial_token: Optional[str] = None,
        retry_seconds: float = 5.0,
    ) -> None:
        self._client = client
        self._initial_token = initial_token
        self._retry_seconds = retry_seconds
        self._token: Optional[AuthToken] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._ready = asyncio.Event()
        self._listeners: List[AuthListener] = []
        self._stopped = False

    @property
    def ready(self) -> bool:
        return self._token is not None

    @property
    def user_id(self) -> Optional[str]:
        return self._token.user_id if self._token else None

    def register_listener(self, listener: AuthListener) -> None:
        self._listeners.append(listener)

    async def start(self) -> None:
        self._stopped = False
        self._ensure_sign_in_task()

    async def stop(self) -> None:
        self._stopped = True
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def aclose(self) -> None:
        await self._client.aclose()

    async def wait_ready(self, timeout: Optional[float] = None) -> bool:
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def get_id_token(self) -> Optional[str]:
        """Current id token, refreshed when close to expiry; None while signed out."""

        token = self._token
        if token is None:
            return None
        if token.expiring and token.refresh_token:
            refreshed = await self._client.refresh(token.refresh_token)
            if refreshed is None:
                await self.invalidate()
                return None
            self._token = refreshed
            token = refreshed
        return token.id_token

    async def invalidate(self) -> None:
        """Drop the current user (e.g. after a 401) and start signing in again."""

        if self._token is None and self._task and not self._task.done():
            return
        logger.warning("Firebase session lost; re-authenticating")
        self._token = None
        self._ready.clear()
        await self._notify(None)
        self._ensure_sign_in_task()

    def _ensure_sign_in_task(self) -> None:
        if self._stopped or (self._task and not self._task.done()):
            return
        self._task = asyncio.create_task(self._sign_in_loop(), name="firebase-sign-in")

    async def _sign_in_loop(self) -> None:
        attempt = 0
        while not self._stopped and self._token is None:
            attempt += 1
            token = await self._sign_in_once()
            if token is not None:
                self._token = token
                self._ready.set()
                logger.info("Firebase user ready (%s...) after %d attempt(s)", token.user_id[:8], attempt)
                await self._notify(token.user_id)
                return
            logger.warning("Firebase sign-in failed; retrying in %.1fs", self._retry_seconds)
            await asyncio.sleep(self._retry_seconds)

    async def _sign_in_once(self) -> Optional[AuthToken]:
        if self._initial_token:
            token = await self._client.sign_in_with_custom_token(self._initial_token)
            if token is not None:
                return token
            logger.info("Custom token sign-in failed; falling back to anonymous")
        return await self._client.sign_in_anonymously()

    async def _notify(self, user_id: Optional[str]) -> None:
        for listener in list(self._listeners):
            try:
                await listener(user_id)
            except Exception:
                logger.exception("Auth listener failed")


class FirestoreSessionDocument:
    """Reads and writes ``artifacts/{app_id}/users/{uid}`` and its ``sessions`` array."""

    def __init__(
        self,
        settings: Settings,
        auth: AuthSession,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings
        self._auth = auth
        self._client = client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    def document_name(self, user_id: str) -> str:
        fb = self.settings.firebase
        return (
            f"projects/{fb.project_id}/databases/(default)/documents/"
            f"artifacts/{fb.app_id}/users/{user_id}"
        )

    def _url(self, path: str) -> str:
        return f"{self.settings.firebase.firestore_url}/{path}"

    async def _headers(self) -> Optional[Dict[str, str]]:
        token = await self._auth.get_id_token()
        if token is None:
            return None
        return {"Authorization": f"Bearer {token}"}

    async def _check_auth(self, response: httpx.Response) -> None:
        if response.status_code in (401, 403):
            await self._auth.invalidate()

    async def fetch_sessions(self, user_id: str) -> Optional[List[Dict[str, Any]]]:
        """Stored session dicts; [] for a missing document, None when the read failed."""

        headers = await self._headers()
        if headers is None:
            return None
        try:
            response = await self._client.get(self._url(self.document_name(user_id)), headers=headers)
            if response.status_code == 404:
                return []
            await self._check_auth(response)
            response.raise_for_status()
            fields = decode_fields(response.json().get("fields", {}))
            sessions = fields.get("sessions") or []
            if not isinstance(sessions, list):
                logger.error("firestore.fetch: 'sessions' is %s, not a list", type(sessions).__name__)
                return None
            return [item for item in sessions if isinstance(item, dict)]
        except httpx.HTTPStatusError as e:
            logger.error("firestore.fetch: HTTP %d - %s", e.response.status_code, e.response.text)
        except httpx.HTTPError as e:
            logger.error("firestore.fetch: transport error - %s", e)
        except (KeyError, ValueError, TypeError) as e:
            logger.error("firestore.fetch: malformed document - %s", e)
        return None

    async def append_session(self, user_id: str, session: Dict[str, Any]) -> bool:
        """Append to ``sessions``; creates the document when it does not exist yet."""

        headers = await self._headers()
        if headers is None:
            return False
        name = self.document_name(user_id)
        body = {
            "writes": [
                {
                    "transform": {
                        "document": name,
                        "fieldTransforms": [
                            {"fieldPath": "sessions", "appendMissingElements": {"values": [encode_value(session)]}}
                        ],
                    },
                    "currentDocument": {"exists": True},
                }
            ]
        }
        fb = self.settings.firebase
        commit_url = self._url(f"projects/{fb.project_id}/databases/(default)/documents:commit")
        try:
            response = await self._client.post(commit_url, json=body, headers=headers)
            if self._is_missing_document(response):
                logger.info("firestore.append: no document for user yet, creating it")
                return await self._create_document(name, [session], headers)
            await self._check_auth(response)
            response.raise_for_status()
            logger.info("Session saved to Firestore")
            return True
        except httpx.HTTPStatusError as e:
            logger.error("firestore.append: HTTP %d - %s", e.response.status_code, e.response.text)
        except httpx.HTTPError as e:
            logger.error("firestore.append: transport error - %s", e)
        return False

    async def reset_sessions(self, user_id: str) -> bool:
        headers = await self._headers()
        if headers is None:
            return False
        try:
            response = await self._client.patch(
                self._url(self.document_name(user_id)),
                params={"updateMask.fieldPaths": "sessions"},
                json={"fields": {"sessions": encode_value([])}},
                headers=headers,
            )
            await self._check_auth(response)
            response.raise_for_status()
            logger.info("Session data reset in Firestore")
            return True
        except httpx.HTTPStatusError as e:
            logger.error("firestore.reset: HTTP %d - %s", e.response.status_code, e.response.text)
        except httpx.HTTPError as e:
            logger.error("firestore.reset: transport error - %s", e)
        return False

    async def _create_document(self, name: str, sessions: List[Dict[str, Any]], headers: Dict[str, str]) -> bool:
        try:
            response = await self._client.patch(
                self._url(name), json={"fields": {"sessions": encode_value(sessions)}}, headers=headers
            )
            await self._check_auth(response)
            response.raise_for_status()
            logger.info("New user document created and session saved")
            return True
        except httpx.HTTPStatusError as e:
            logger.error("firestore.create: HTTP %d - %s", e.response.status_code, e.response.text)
        except httpx.HTTPError as e:
            logger.error("firestore.create: transport error - %s", e)
        return False

    @staticmethod
    def _is_missing_document(response: httpx.Response) -> bool:
        if response.status_code == 404:
            return True
        if response.status_code != 400:
            return False
        try:
            status = response.json().get("error", {}).get("status")
        except ValueError:
            return False
        return status in {"NOT_FOUND", "FAILED_PRECONDITION"}

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing Firestore HTTP client: %s", e)


__all__ = ["AuthSession", "AuthToken", "FirebaseAuthClient", "FirestoreSessionDocument"]
