"""Google sign-in via OAuth2 authorization code + PKCE with a loopback redirect.

One sign-in may await its callback at a time. Tokens and the identity record
are encrypted with the storage cipher before they reach the vault. A stored
identity that is close to expiry is refreshed on read; a refresh rejected as
``invalid_grant`` signs the user out, any other refresh failure returns the
stale identity.

Dependencies: identity.pkce, identity.loopback, identity.types, vault.store
Wired in: runtime.py → build_runtime(), server/methods.py → identity.*
"""

from __future__ import annotations

import asyncio
import html
import json
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
from fastapi import Request, Response
from fastapi.responses import HTMLResponse

from trustgate.identity.loopback import CallbackHandler, LoopbackListener
from trustgate.identity.pkce import (
    build_auth_url,
    code_challenge,
    generate_state,
    generate_verifier,
    loopback_redirect_uri,
)
from trustgate.identity.types import (
    ALREADY_IN_PROGRESS,
    FEATURE_DISABLED,
    INVALID_GRANT,
    MISSING_CODE,
    MISSING_REFRESH_TOKEN,
    NOT_CONFIGURED,
    OAUTH_ERROR,
    SESSION_NOT_FOUND,
    TIMED_OUT,
    TOKEN_EXCHANGE_FAILED,
    USERINFO_FAILED,
    GoogleIdentityRecord,
    IdentityError,
    SignInStart,
    TokenGrant,
    UserInfo,
)
from trustgate.security.storage_crypto import StorageCryptoError
from trustgate.vault.store import EncryptedVault
from trustgate.vault.types import VaultError

_log = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v1/userinfo?alt=json"

IDENTITY_SERVICE = "trustgate"
ACCESS_TOKEN_ACCOUNT = "google-access-token"
REFRESH_TOKEN_ACCOUNT = "google-refresh-token"
IDENTITY_ACCOUNT = "google-identity"

REFRESH_SKEW_MS = 5 * 60 * 1000
DEFAULT_SIGN_IN_TIMEOUT_MS = 5 * 60 * 1000
SIGN_IN_SESSION_TTL_MS = 10 * 60 * 1000

_CALLBACK_PATH = "/callback"
_PAGE_TEMPLATE = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <title>trustgate sign-in</title>
  </head>
  <body style="font-family: system-ui, sans-serif; padding: 24px;">
    <h2>{title}</h2>
    <p>{message}</p>
    <p>You can close this tab and return to the app.</p>
  </body>
</html>
"""

ListenerFactory = Callable[[CallbackHandler, int], LoopbackListener]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _default_listener_factory(handler: CallbackHandler, port: int) -> LoopbackListener:
    return LoopbackListener(handler, port=port)


def _status_page(*, ok: bool, message: str) -> HTMLResponse:
    body = _PAGE_TEMPLATE.format(
        title="Sign-in complete" if ok else "Sign-in failed",
        message=html.escape(message),
    )
    return HTMLResponse(body, status_code=200 if ok else 400)


def _mark_retrieved(future: asyncio.Future[GoogleIdentityRecord]) -> None:
    if not future.cancelled():
        future.exception()


@dataclass
class _SignInSession:
    session_id: str
    state: str
    verifier: str
    future: asyncio.Future[GoogleIdentityRecord]
    listener: LoopbackListener | None = None
    redirect_uri: str = ""
    awaiting: bool = True
    handling: bool = False
    close_task: asyncio.Task[None] | None = field(default=None, repr=False)
    deadline: asyncio.TimerHandle | None = field(default=None, repr=False)


def _cancel_deadline(session: _SignInSession) -> None:
    if session.deadline is not None:
        session.deadline.cancel()
        session.deadline = None


class GoogleIdentityBroker:
    def __init__(
        self,
        vault: EncryptedVault,
        http: httpx.AsyncClient,
        *,
        client_id: str | None,
        enabled: bool,
        redirect_port: int = 0,
        session_ttl_ms: int = SIGN_IN_SESSION_TTL_MS,
        now_ms: Callable[[], int] = _now_ms,
        listener_factory: ListenerFactory = _default_listener_factory,
    ) -> None:
        self._vault = vault
        self._http = http
        self._client_id = (client_id or "").strip()
        self._enabled = enabled
        self._redirect_port = redirect_port
        self._session_ttl_ms = session_ttl_ms
        self._now_ms = now_ms
        self._listener_factory = listener_factory
        self._sessions: dict[str, _SignInSession] = {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    # ------------------------------------------------------------------
    # Identity

    async def get_identity(self) -> GoogleIdentityRecord | None:
        if not self._enabled:
            return None
        identity = await self._read_identity()
        if identity is None:
            return None
        if self._now_ms() < identity.expires_at_ms - REFRESH_SKEW_MS:
            return identity
        if not self._client_id:
            return identity
        refresh_token = await self._read_token(REFRESH_TOKEN_ACCOUNT)
        if refresh_token is None:
            await self.sign_out()
            return None
        try:
            grant = await self._refresh_access_token(refresh_token)
            refreshed = identity.with_expiry(grant.expires_at_ms)
            await self._write_encrypted(ACCESS_TOKEN_ACCOUNT, grant.access_token)
            await self._write_identity(refreshed)
        except IdentityError as exc:
            if exc.code == INVALID_GRANT:
                _log.info("Stored Google authorization was revoked; signing out")
                await self.sign_out()
                return None
            _log.warning("Google token refresh failed (%s); returning stale identity", exc.code)
            return identity
        except (httpx.HTTPError, VaultError, StorageCryptoError) as exc:
            _log.warning(
                "Google token refresh failed (%s); returning stale identity", type(exc).__name__
            )
            return identity
        return refreshed

    async def sign_out(self) -> None:
        for account in (ACCESS_TOKEN_ACCOUNT, REFRESH_TOKEN_ACCOUNT, IDENTITY_ACCOUNT):
            try:
                await asyncio.to_thread(self._vault.delete, IDENTITY_SERVICE, account)
            except VaultError as exc:
                _log.warning("Failed to delete %s during sign-out: %s", account, exc.code)

    async def read_access_token(self) -> str | None:
        return await self._read_token(ACCESS_TOKEN_ACCOUNT)

    # ------------------------------------------------------------------
    # Sign-in

    async def start_sign_in(self) -> SignInStart:
        if not self._enabled:
            raise IdentityError(FEATURE_DISABLED, "google sign-in is not enabled")
        if not self._client_id:
            raise IdentityError(
                NOT_CONFIGURED,
                "google oauth client id is not configured (set TRUSTGATE_GOOGLE_CLIENT_ID)",
            )
        self._forget_finished_sessions()
        if any(session.awaiting for session in self._sessions.values()):
            raise IdentityError(ALREADY_IN_PROGRESS, "google sign-in already running")

        loop = asyncio.get_running_loop()
        verifier = generate_verifier()
        session = _SignInSession(
            session_id=str(uuid.uuid4()),
            state=generate_state(),
            verifier=verifier,
            future=loop.create_future(),
        )
        session.future.add_done_callback(_mark_retrieved)
        self._sessions[session.session_id] = session

        async def _handler(request: Request) -> Response:
            return await self._handle_callback(session, request)

        listener = self._listener_factory(_handler, self._redirect_port)
        try:
            port = await listener.start()
        except BaseException:
            self._sessions.pop(session.session_id, None)
            raise
        session.listener = listener
        session.redirect_uri = loopback_redirect_uri(port)
        session.deadline = loop.call_later(self._session_ttl_ms / 1000, self._expire, session)
        auth_url = build_auth_url(
            client_id=self._client_id,
            redirect_uri=session.redirect_uri,
            state=session.state,
            challenge=code_challenge(verifier),
        )
        _log.info("Google sign-in %s awaiting callback on port %s", session.session_id, port)
        return SignInStart(session_id=session.session_id, auth_url=auth_url)

    async def wait_sign_in(
        self,
        session_id: str,
        timeout_ms: int = DEFAULT_SIGN_IN_TIMEOUT_MS,
    ) -> GoogleIdentityRecord:
        """Wait for the callback to finish. ``timeout_ms == 0`` waits indefinitely.

        The session is torn down on every exit, including cancellation of the
        caller. While a caller waits, the start-side session deadline is off.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise IdentityError(SESSION_NOT_FOUND, "google sign-in session not found")
        _cancel_deadline(session)
        timeout = max(0, int(timeout_ms))
        try:
            if timeout == 0:
                return await asyncio.shield(session.future)
            return await asyncio.wait_for(asyncio.shield(session.future), timeout / 1000)
        except TimeoutError:
            await self._abort(session, IdentityError(TIMED_OUT, "google sign-in timed out"))
            raise IdentityError(TIMED_OUT, "google sign-in timed out") from None
        except asyncio.CancelledError:
            await self._abort(session, IdentityError(TIMED_OUT, "google sign-in cancelled"))
            raise
        finally:
            if session.future.done():
                self._sessions.pop(session_id, None)

    async def close(self) -> None:
        """Tear down every outstanding listener."""
        for session in list(self._sessions.values()):
            await self._abort(session, IdentityError(TIMED_OUT, "google sign-in cancelled"))

    # ------------------------------------------------------------------
    # Callback

    async def _handle_callback(self, session: _SignInSession, request: Request) -> Response:
        if request.method != "GET" or request.url.path != _CALLBACK_PATH:
            return Response(status_code=404)
        returned_state = request.query_params.get("state") or ""
        if not returned_state or returned_state != session.state:
            return _status_page(ok=False, message="Invalid callback state.")
        if session.handling or not session.awaiting:
            return _status_page(ok=False, message="Sign-in already handled.")

        error = request.query_params.get("error")
        if error:
            self._fail(session, IdentityError(OAUTH_ERROR, f"oauth_error:{error}"))
            return _status_page(ok=False, message=f"OAuth error: {error}")
        code = (request.query_params.get("code") or "").strip()
        if not code:
            self._fail(session, IdentityError(MISSING_CODE, "missing_oauth_code"))
            return _status_page(ok=False, message="Missing OAuth code.")

        session.handling = True
        try:
            identity = await self._complete_sign_in(session, code)
        except (IdentityError, httpx.HTTPError, VaultError, StorageCryptoError) as exc:
            failure = (
                exc
                if isinstance(exc, IdentityError)
                else IdentityError(TOKEN_EXCHANGE_FAILED, f"sign-in failed: {type(exc).__name__}")
            )
            _log.warning("Google sign-in %s failed: %s", session.session_id, failure.code)
            self._fail(session, failure)
            return _status_page(ok=False, message="Token exchange failed.")
        finally:
            self._finish(session)
        if not session.future.done():
            session.future.set_result(identity)
        _log.info("Google sign-in %s completed", session.session_id)
        return _status_page(ok=True, message="You're signed in.")

    async def _complete_sign_in(self, session: _SignInSession, code: str) -> GoogleIdentityRecord:
        grant = await self._exchange_code(code, session.verifier, session.redirect_uri)
        refresh_token = grant.refresh_token or await self._read_token(REFRESH_TOKEN_ACCOUNT)
        if not refresh_token:
            raise IdentityError(
                MISSING_REFRESH_TOKEN, "missing refresh token; re-auth with prompt=consent"
            )
        userinfo = await self._fetch_userinfo(grant.access_token)
        await self._write_encrypted(ACCESS_TOKEN_ACCOUNT, grant.access_token)
        await self._write_encrypted(REFRESH_TOKEN_ACCOUNT, refresh_token)
        identity = GoogleIdentityRecord(
            email=userinfo.email,
            expires_at_ms=grant.expires_at_ms,
            name=userinfo.name,
            picture=userinfo.picture,
            id=userinfo.id,
        )
        await self._write_identity(identity)
        return identity

    def _fail(self, session: _SignInSession, error: IdentityError) -> None:
        if not session.future.done():
            session.future.set_exception(error)
        self._finish(session)

    def _finish(self, session: _SignInSession) -> None:
        """Stop accepting callbacks and close the listener in the background."""
        session.awaiting = False
        _cancel_deadline(session)
        if session.listener is not None and session.close_task is None:
            session.listener.request_close()
            session.close_task = asyncio.create_task(session.listener.close())

    async def _abort(self, session: _SignInSession, error: IdentityError) -> None:
        self._sessions.pop(session.session_id, None)
        session.awaiting = False
        _cancel_deadline(session)
        if not session.future.done():
            session.future.set_exception(error)
        if session.close_task is not None:
            await session.close_task
        elif session.listener is not None:
            await session.listener.close()

    def _expire(self, session: _SignInSession) -> None:
        session.deadline = None
        if session.awaiting:
            _log.info("Google sign-in %s expired without a callback", session.session_id)
            self._fail(session, IdentityError(TIMED_OUT, "google sign-in timed out"))

    def _forget_finished_sessions(self) -> None:
        for session_id, session in list(self._sessions.items()):
            if not session.awaiting and session.future.done():
                del self._sessions[session_id]

    # ------------------------------------------------------------------
    # Provider calls

    async def _exchange_code(self, code: str, verifier: str, redirect_uri: str) -> TokenGrant:
        payload = await self._post_token(
            {
                "grant_type": "authorization_code",
                "client_id": self._client_id,
                "code": code,
                "redirect_uri": redirect_uri,
                "code_verifier": verifier,
            },
            action="exchange",
        )
        return self._parse_grant(payload, action="exchange")

    async def _refresh_access_token(self, refresh_token: str) -> TokenGrant:
        payload = await self._post_token(
            {
                "grant_type": "refresh_token",
                "client_id": self._client_id,
                "refresh_token": refresh_token,
            },
            action="refresh",
        )
        return self._parse_grant(payload, action="refresh")

    async def _post_token(self, form: dict[str, str], *, action: str) -> dict[str, Any]:
        response = await self._http.post(GOOGLE_TOKEN_URL, data=form)
        if not response.is_success:
            error_code = _provider_error_code(response)
            code = INVALID_GRANT if error_code == INVALID_GRANT else TOKEN_EXCHANGE_FAILED
            raise IdentityError(
                code,
                f"google token {action} failed ({response.status_code}): {error_code or 'error'}",
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise IdentityError(
                TOKEN_EXCHANGE_FAILED, f"google token {action} returned invalid JSON"
            ) from exc
        if not isinstance(payload, dict):
            raise IdentityError(TOKEN_EXCHANGE_FAILED, f"google token {action} returned non-object")
        return payload

    def _parse_grant(self, payload: dict[str, Any], *, action: str) -> TokenGrant:
        raw_access = payload.get("access_token")
        access_token = raw_access.strip() if isinstance(raw_access, str) else ""
        raw_refresh = payload.get("refresh_token")
        refresh_token = raw_refresh.strip() if isinstance(raw_refresh, str) else ""
        expires_in = payload.get("expires_in")
        if isinstance(expires_in, bool) or not isinstance(expires_in, int | float):
            expires_in = 0
        if not access_token or expires_in <= 0:
            raise IdentityError(
                TOKEN_EXCHANGE_FAILED, f"google token {action} returned an invalid access_token"
            )
        expires_at_ms = self._now_ms() + max(0, int(expires_in * 1000) - REFRESH_SKEW_MS)
        return TokenGrant(
            access_token=access_token,
            refresh_token=refresh_token or None,
            expires_at_ms=expires_at_ms,
        )

    async def _fetch_userinfo(self, access_token: str) -> UserInfo:
        response = await self._http.get(
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if not response.is_success:
            raise IdentityError(
                USERINFO_FAILED, f"google userinfo failed ({response.status_code})"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise IdentityError(USERINFO_FAILED, "google userinfo returned invalid JSON") from exc
        userinfo = UserInfo.from_dict(payload)
        if userinfo is None:
            raise IdentityError(USERINFO_FAILED, "google userinfo did not include an email")
        return userinfo

    # ------------------------------------------------------------------
    # Vault access (blocking backends run off the event loop)

    async def _read_token(self, account: str) -> str | None:
        try:
            value = await asyncio.to_thread(self._vault.read, IDENTITY_SERVICE, account)
        except (VaultError, StorageCryptoError) as exc:
            _log.warning("Stored %s unusable: %s", account, type(exc).__name__)
            return None
        value = (value or "").strip()
        return value or None

    async def _write_encrypted(self, account: str, value: str) -> None:
        await asyncio.to_thread(self._vault.write, IDENTITY_SERVICE, account, value)

    async def _read_identity(self) -> GoogleIdentityRecord | None:
        raw = await self._read_token(IDENTITY_ACCOUNT)
        if raw is None:
            return None
        try:
            return GoogleIdentityRecord.from_dict(json.loads(raw))
        except json.JSONDecodeError:
            return None

    async def _write_identity(self, identity: GoogleIdentityRecord) -> None:
        await self._write_encrypted(IDENTITY_ACCOUNT, json.dumps(identity.to_dict()))


def _provider_error_code(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return INVALID_GRANT if INVALID_GRANT in response.text else None
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return None
