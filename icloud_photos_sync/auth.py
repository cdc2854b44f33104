"""iCloud authentication: login, MFA, trust token and account setup.

The session is an explicit state machine. ``transition`` is a pure table lookup
returning the next state plus the side effects to run; ``AuthSession`` performs
the HTTP calls behind those effects and resolves ``ready`` exactly once.

Usage:
    session = AuthSession(username, password, data_dir=config.paths.data_dir)
    photos = session.authenticate().result()
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from http.cookiejar import Cookie
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from icloud_photos_sync.constants import (
    AUTH_HEADERS,
    COOKIE_AASP,
    HEADER_SCNT,
    HEADER_SESSION_ID,
    HEADER_SESSION_TOKEN,
    HEADER_TRUST_TOKEN,
    PHOTOS_SERVICE_KEY,
    SESSION_VALIDITY_SECONDS,
    SETUP_HEADERS,
    SETUP_URL,
    SIGNIN_URL,
    TRUST_TOKEN_FILE_NAME,
    TRUST_URL,
)
from icloud_photos_sync.errors import (
    AccountSetupFailed,
    AuthSecretsMissing,
    BadCredentials,
    ICloudSyncError,
    InvalidTransition,
    MfaRequiredButDisallowed,
    MfaResendFailed,
    MfaServerStartFailed,
    MfaSubmitFailed,
    NoResponse,
    PhotosServiceNotReady,
    TokenAcquisitionFailed,
    UnexpectedHttpResponse,
    UnknownUsername,
)
from icloud_photos_sync.events import WarningChannel
from icloud_photos_sync.mfa import MfaMethod, MfaPrompt
from icloud_photos_sync.query import QueryExecutor


class SessionState(Enum):
    NEEDS_AUTH = "needs_auth"
    AUTHENTICATING = "authenticating"
    MFA_REQUIRED = "mfa_required"
    AUTHENTICATED = "authenticated"
    TRUSTED = "trusted"
    ACCOUNT_READY = "account_ready"
    FAILED = "failed"


class SessionEvent(Enum):
    START = "start"
    MFA_REQUIRED = "mfa_required"
    AUTHENTICATED = "authenticated"
    TRUSTED = "trusted"
    ACCOUNT_READY = "account_ready"
    FAIL = "fail"


class Effect(Enum):
    LOGIN = "login"
    PROMPT_MFA = "prompt_mfa"
    STOP_MFA_PROMPT = "stop_mfa_prompt"
    ACQUIRE_TOKENS = "acquire_tokens"
    SETUP_ACCOUNT = "setup_account"
    GET_PHOTOS_READY = "get_photos_ready"
    REJECT_READY = "reject_ready"


TRANSITIONS: Dict[Tuple[SessionState, SessionEvent], Tuple[SessionState, Tuple[Effect, ...]]] = {
    (SessionState.NEEDS_AUTH, SessionEvent.START): (SessionState.AUTHENTICATING, (Effect.LOGIN,)),
    (SessionState.AUTHENTICATING, SessionEvent.MFA_REQUIRED): (SessionState.MFA_REQUIRED, (Effect.PROMPT_MFA,)),
    (SessionState.AUTHENTICATING, SessionEvent.AUTHENTICATED): (SessionState.AUTHENTICATED, (Effect.ACQUIRE_TOKENS,)),
    (SessionState.MFA_REQUIRED, SessionEvent.AUTHENTICATED): (
        SessionState.AUTHENTICATED,
        (Effect.STOP_MFA_PROMPT, Effect.ACQUIRE_TOKENS),
    ),
    (SessionState.AUTHENTICATED, SessionEvent.TRUSTED): (SessionState.TRUSTED, (Effect.SETUP_ACCOUNT,)),
    (SessionState.TRUSTED, SessionEvent.ACCOUNT_READY): (
        SessionState.ACCOUNT_READY,
        (Effect.STOP_MFA_PROMPT, Effect.GET_PHOTOS_READY),
    ),
}

FAILURE_EFFECTS: Tuple[Effect, ...] = (Effect.STOP_MFA_PROMPT, Effect.REJECT_READY)


def transition(state: SessionState, event: SessionEvent) -> Tuple[SessionState, Tuple[Effect, ...]]:
    """Pure transition function: (state, event) -> (new state, effects)."""

    if event is SessionEvent.FAIL:
        if state is SessionState.FAILED:
            raise InvalidTransition(f"Session already failed, cannot apply {event.value}")
        return SessionState.FAILED, FAILURE_EFFECTS
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition(f"Cannot apply {event.value} in state {state.value}") from None


@dataclass
class AuthSecrets:
    session_id: str
    scnt: str
    aasp: Optional[str] = None


@dataclass
class AccountTokens:
    session_token: str = ""
    trust_token: str = ""


PhotosFactory = Callable[["AuthSession"], Any]


class AuthSession:
    """Owns credentials, tokens and cookies and drives the login state machine."""

    def __init__(
        self,
        username: str,
        password: str,
        *,
        data_dir: str,
        trust_token: Optional[str] = None,
        refresh_token: bool = False,
        fail_on_mfa: bool = False,
        mfa_prompt: Optional[MfaPrompt] = None,
        photos_factory: Optional[PhotosFactory] = None,
        http: Optional[requests.Session] = None,
        warnings: Optional[WarningChannel] = None,
        logger: Optional[logging.Logger] = None,
        session_validity_seconds: int = SESSION_VALIDITY_SECONDS,
        request_timeout: int = 30,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.username = username
        self.password = password
        self.data_dir = data_dir
        self.trust_token_file = os.path.join(data_dir, TRUST_TOKEN_FILE_NAME)
        self.fail_on_mfa = fail_on_mfa
        self.mfa_prompt = mfa_prompt
        self.photos_factory: PhotosFactory = photos_factory or QueryExecutor
        self.http = http or requests.Session()
        self.logger = logger or logging.getLogger("icloud-auth")
        self.warnings = warnings or WarningChannel(self.logger)
        self.session_validity_seconds = session_validity_seconds
        self.request_timeout = request_timeout
        self.clock = clock

        self.state = SessionState.NEEDS_AUTH
        self.ready: "Future[Any]" = Future()
        self.failure: Optional[ICloudSyncError] = None
        self.mfa_device_index: Optional[int] = None
        self.secrets: Optional[AuthSecrets] = None
        self.tokens = AccountTokens(trust_token=self._initial_trust_token(trust_token, refresh_token))
        self.cookies: List[Cookie] = []
        self.cookies_acquired_at: Optional[float] = None
        self.webservices: Dict[str, Any] = {}
        self.account_info: Dict[str, Any] = {}
        self.photos: Any = None

        self._lock = threading.RLock()
        self._refresh_lock = threading.Lock()
        self._refresh_future: "Optional[Future[None]]" = None
        self._prompt_started = False

    # ------------------------------------------------------------------
    # Trust token persistence
    # ------------------------------------------------------------------
    def _initial_trust_token(self, supplied: Optional[str], refresh_token: bool) -> str:
        if refresh_token:
            self.logger.info("Ignoring stored trust token, a new one will be acquired")
            return ""
        if supplied:
            return supplied
        return self.load_trust_token()

    def load_trust_token(self) -> str:
        try:
            with open(self.trust_token_file, "r", encoding="utf-8") as handle:
                token = handle.read().strip()
        except FileNotFoundError:
            self.logger.debug("No trust token file at %s", self.trust_token_file)
            return ""
        except OSError as exc:
            self.logger.warning("Unable to read trust token file %s: %s", self.trust_token_file, exc)
            return ""
        self.logger.debug("Loaded trust token from %s", self.trust_token_file)
        return token

    def store_trust_token(self, token: str) -> None:
        os.makedirs(self.data_dir, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=".trust-token.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(token)
            os.replace(tmp_path, self.trust_token_file)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    # ------------------------------------------------------------------
    # State machine plumbing
    # ------------------------------------------------------------------
    def _apply(self, event: SessionEvent) -> Tuple[Effect, ...]:
        with self._lock:
            new_state, effects = transition(self.state, event)
            self.logger.debug("Session %s -> %s (%s)", self.state.value, new_state.value, event.value)
            self.state = new_state
            return effects

    def _dispatch(self, event: SessionEvent) -> None:
        self._run_effects(self._apply(event))

    def _run_effects(self, effects: Tuple[Effect, ...]) -> None:
        handlers: Dict[Effect, Callable[[], None]] = {
            Effect.LOGIN: self._login,
            Effect.PROMPT_MFA: self._prompt_mfa,
            Effect.STOP_MFA_PROMPT: self._stop_mfa_prompt,
            Effect.ACQUIRE_TOKENS: self.get_tokens,
            Effect.SETUP_ACCOUNT: self.setup_account,
            Effect.GET_PHOTOS_READY: self.get_photos_ready,
            Effect.REJECT_READY: self._reject_ready,
        }
        for effect in effects:
            try:
                handlers[effect]()
            except ICloudSyncError as exc:
                self._abort(exc)
                return
            except Exception as exc:  # readiness must settle whatever an effect raises
                self._abort(ICloudSyncError(f"Unexpected error during {effect.value}: {exc}", cause=exc))
                return

    def _fail(self, error: ICloudSyncError) -> None:
        with self._lock:
            if self.state is SessionState.FAILED:
                self.logger.debug("Ignoring follow-up failure after session failed: %s", error)
                return
            self.failure = error
            effects = self._apply(SessionEvent.FAIL)
        self.logger.error("%s", error)
        self._run_effects(effects)

    def _abort(self, error: ICloudSyncError) -> None:
        self._fail(error)
        self._reject_ready()

    def _reject_ready(self) -> None:
        if not self.ready.done():
            self.ready.set_exception(self.failure or ICloudSyncError())

    def _resolve_ready(self, value: Any) -> None:
        if not self.ready.done():
            self.ready.set_result(value)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------
    def authenticate(self) -> "Future[Any]":
        """Start authentication; repeated calls return the same readiness future."""

        with self._lock:
            if self.state is not SessionState.NEEDS_AUTH:
                return self.ready
            effects = self._apply(SessionEvent.START)
        self.logger.info("Authenticating user %s", self.username)
        self._run_effects(effects)
        return self.ready

    def _login(self) -> None:
        payload = {
            "accountName": self.username,
            "password": self.password,
            "trustTokens": [self.tokens.trust_token] if self.tokens.trust_token else [],
        }
        try:
            response = self.http.post(
                SIGNIN_URL,
                json=payload,
                headers=AUTH_HEADERS,
                params={"isRememberMeEnabled": "true"},
                timeout=self.request_timeout,
            )
        except requests.RequestException as exc:
            self._fail(NoResponse(cause=exc))
            return

        status = response.status_code
        if status == 200:
            secrets = self._parse_auth_secrets(response)
            if secrets is None:
                self._fail(AuthSecretsMissing("Unable to process auth secrets"))
                return
            self.secrets = secrets
            self.logger.info("Authentication successful, trust token accepted")
            self._dispatch(SessionEvent.AUTHENTICATED)
        elif status == 409:
            secrets = self._parse_auth_secrets(response)
            if secrets is None:
                self._fail(AuthSecretsMissing("Unable to process cookies"))
                return
            self.secrets = secrets
            self.mfa_device_index = 0
            self.logger.info("Valid credentials, MFA code required (device index %d)", self.mfa_device_index)
            self._dispatch(SessionEvent.MFA_REQUIRED)
        elif status == 403:
            self._fail(UnknownUsername())
        elif status == 401:
            self._fail(BadCredentials())
        else:
            self._fail(UnexpectedHttpResponse(status))

    @staticmethod
    def _parse_auth_secrets(response: requests.Response) -> Optional[AuthSecrets]:
        session_id = response.headers.get(HEADER_SESSION_TOKEN)
        scnt = response.headers.get(HEADER_SCNT)
        if not session_id or not scnt:
            return None
        return AuthSecrets(session_id=session_id, scnt=scnt, aasp=response.cookies.get(COOKIE_AASP))

    # ------------------------------------------------------------------
    # MFA
    # ------------------------------------------------------------------
    def _prompt_mfa(self) -> None:
        if self.fail_on_mfa:
            self._fail(MfaRequiredButDisallowed())
            return
        if self.mfa_prompt is None:
            self._fail(MfaServerStartFailed("No MFA prompt configured"))
            return
        try:
            self.mfa_prompt.start(self)
        except Exception as exc:  # collaborator failures of any kind are fatal here
            self._fail(MfaServerStartFailed(cause=exc))
            return
        self._prompt_started = True

    def _stop_mfa_prompt(self) -> None:
        if not self._prompt_started or self.mfa_prompt is None:
            return
        self._prompt_started = False
        self.mfa_prompt.stop()

    def _auth_headers(self) -> Dict[str, str]:
        if self.secrets is None:
            raise AuthSecretsMissing("Auth secrets are required before this request")
        headers = dict(AUTH_HEADERS)
        headers[HEADER_SCNT] = self.secrets.scnt
        headers[HEADER_SESSION_ID] = self.secrets.session_id
        if self.secrets.aasp:
            headers["Cookie"] = f"{COOKIE_AASP}={self.secrets.aasp}"
        return headers

    def resend_mfa(self, method: MfaMethod) -> bool:
        """Request a new code; failures are warnings and leave the session waiting."""

        self.logger.info("Requesting new MFA code via %s", method)
        try:
            response = self.http.put(
                method.resend_url,
                json=method.resend_payload(),
                headers=self._auth_headers(),
                timeout=self.request_timeout,
            )
        except (requests.RequestException, AuthSecretsMissing) as exc:
            self.warnings.emit(MfaResendFailed(cause=exc), logger=self.logger)
            return False
        if response.status_code != method.resend_success_status:
            self.warnings.emit(MfaResendFailed(cause=UnexpectedHttpResponse(response.status_code)), logger=self.logger)
            return False
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        self.logger.info("Successfully requested new MFA code using %s", method.describe_resend(payload))
        return True

    def submit_mfa(self, method: MfaMethod, code: str) -> None:
        if self.state is not SessionState.MFA_REQUIRED:
            self.logger.warning("Ignoring MFA code, session is %s", self.state.value)
            return
        self.logger.info("Submitting MFA code via %s", method)
        try:
            response = self.http.post(
                method.submit_url,
                json=method.submit_payload(code.strip()),
                headers=self._auth_headers(),
                timeout=self.request_timeout,
            )
        except (requests.RequestException, AuthSecretsMissing) as exc:
            self._fail(MfaSubmitFailed(cause=exc))
            return
        if response.status_code != method.submit_success_status:
            self._fail(MfaSubmitFailed(cause=UnexpectedHttpResponse(response.status_code)))
            return
        self.logger.info("MFA code accepted")
        self._dispatch(SessionEvent.AUTHENTICATED)

    # ------------------------------------------------------------------
    # Trust token
    # ------------------------------------------------------------------
    def get_tokens(self) -> None:
        self.logger.info("Acquiring account tokens")
        try:
            response = self.http.get(TRUST_URL, headers=self._auth_headers(), timeout=self.request_timeout)
        except (requests.RequestException, AuthSecretsMissing) as exc:
            self._fail(TokenAcquisitionFailed(cause=exc))
            return
        session_token = response.headers.get(HEADER_SESSION_TOKEN)
        trust_token = response.headers.get(HEADER_TRUST_TOKEN)
        if response.status_code != 200 or not session_token or not trust_token:
            self._fail(TokenAcquisitionFailed(cause=UnexpectedHttpResponse(response.status_code)))
            return
        try:
            self.store_trust_token(trust_token)
        except OSError as exc:
            self._fail(TokenAcquisitionFailed(f"Unable to persist trust token: {exc}", cause=exc))
            return
        self.tokens = AccountTokens(session_token=session_token, trust_token=trust_token)
        self.logger.info("Acquired and stored trust token")
        self._dispatch(SessionEvent.TRUSTED)

    # ------------------------------------------------------------------
    # Account setup
    # ------------------------------------------------------------------
    def _request_account_setup(self) -> Tuple[List[Cookie], Dict[str, Any], Dict[str, Any]]:
        if not self.tokens.session_token or not self.tokens.trust_token:
            raise AccountSetupFailed("Session and trust token are required for account setup")
        try:
            response = self.http.post(
                SETUP_URL,
                json={"dsWebAuthToken": self.tokens.session_token, "trustToken": self.tokens.trust_token},
                headers=SETUP_HEADERS,
                timeout=self.request_timeout,
            )
        except requests.RequestException as exc:
            raise AccountSetupFailed(cause=exc) from exc
        if response.status_code != 200:
            raise AccountSetupFailed(cause=UnexpectedHttpResponse(response.status_code))
        cookies = [cookie for cookie in response.cookies if not cookie.is_expired()]
        if not cookies:
            raise AccountSetupFailed("Unable to setup iCloud Account: no valid cookies received")
        try:
            data = response.json()
        except ValueError as exc:
            raise AccountSetupFailed(cause=exc) from exc
        if not isinstance(data, dict):
            raise AccountSetupFailed("Unable to setup iCloud Account: response is not an object")
        webservices = data.get("webservices")
        photos_service = webservices.get(PHOTOS_SERVICE_KEY) if isinstance(webservices, dict) else None
        if not isinstance(photos_service, dict) or not photos_service.get("url"):
            raise AccountSetupFailed("Unable to setup iCloud Account: photos service URL missing")
        account_info = data.get("dsInfo") or {}
        if not isinstance(account_info, dict):
            raise AccountSetupFailed("Unable to setup iCloud Account: account info is not an object")
        return cookies, webservices, account_info

    def _store_account(self, cookies: List[Cookie], webservices: Dict[str, Any], account_info: Dict[str, Any]) -> None:
        with self._lock:
            self.cookies = cookies
            self.cookies_acquired_at = self.clock()
            self.webservices = webservices
            self.account_info = account_info

    def setup_account(self) -> None:
        self.logger.info("Setting up iCloud account")
        try:
            cookies, webservices, account_info = self._request_account_setup()
        except AccountSetupFailed as exc:
            self._fail(exc)
            return
        self._store_account(cookies, webservices, account_info)
        self.logger.info("Account ready, received %d cookie(s)", len(cookies))
        self._dispatch(SessionEvent.ACCOUNT_READY)

    def get_photos_ready(self) -> None:
        if not self.cookies_valid():
            self._fail(PhotosServiceNotReady("Unable to get iCloud Photos service ready: cookies invalid"))
            return
        try:
            photos = self.photos_factory(self)
        except Exception as exc:  # factory may raise anything while wiring the component
            self._fail(PhotosServiceNotReady(cause=exc))
            return
        self.photos = photos
        self.logger.info("iCloud Photos service ready")
        self._resolve_ready(photos)

    # ------------------------------------------------------------------
    # Session freshness
    # ------------------------------------------------------------------
    def cookies_valid(self) -> bool:
        return bool(self.cookies) and not any(cookie.is_expired() for cookie in self.cookies)

    def cookies_stale(self) -> bool:
        if not self.cookies or self.cookies_acquired_at is None:
            return True
        return self.clock() - self.cookies_acquired_at >= self.session_validity_seconds

    def cookie_header(self) -> str:
        return "; ".join(f"{cookie.name}={cookie.value}" for cookie in self.cookies)

    @property
    def photos_url(self) -> Optional[str]:
        return (self.webservices.get(PHOTOS_SERVICE_KEY) or {}).get("url")

    def refresh(self) -> None:
        """Re-run account setup for fresh cookies; concurrent callers share one request."""

        with self._refresh_lock:
            pending = self._refresh_future
            owner = pending is None
            if pending is None:
                pending = Future()
                self._refresh_future = pending
        if owner:
            self.logger.info("Refreshing iCloud session cookies")
            try:
                self._store_account(*self._request_account_setup())
                pending.set_result(None)
            except AccountSetupFailed as exc:
                self.logger.error("Session refresh failed: %s", exc)
                pending.set_exception(exc)
            finally:
                with self._refresh_lock:
                    self._refresh_future = None
        pending.result()


__all__ = [
    "AccountTokens",
    "AuthSecrets",
    "AuthSession",
    "Effect",
    "SessionEvent",
    "SessionState",
    "TRANSITIONS",
    "transition",
]
