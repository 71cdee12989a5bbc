"""Authentication for auditing protected pages.

This module provides the ``AuthConfig`` dataclass and ``authenticate``, which
drives a browsing session through a login flow before crawling and analysis:

- ``none``: nothing to do (cookies may still be installed)
- ``basic``: HTTP basic credentials sent with every request
- ``form``: fill and submit a login form, then wait for a logged-in signal
- ``sso``: navigate to an identity provider and run its login steps

Authentication failures are deliberately *recoverable*: every timeout or
browser error during login is turned into ``AuthenticationFailed``, logged,
and reported in the returned ``AuthResult``. The audit then continues
unauthenticated instead of aborting.

Example usage:

    from auditor.auth import AuthConfig, authenticate

    auth = AuthConfig.from_dict({
        "type": "form",
        "username": "user@example.com",
        "password": "secret",
        "usernameSelector": "#email",
        "passwordSelector": "#password",
        "waitForSelector": ".dashboard",
    })
    result = await authenticate(session, auth)
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from bs4 import BeautifulSoup

from .browser import BrowserSession, BrowserSessionError

LOGGER = logging.getLogger(__name__)

# Bounded waits (milliseconds)
LOGIN_FORM_TIMEOUT_MS = 10000
FIELD_TIMEOUT_MS = 5000
FORM_SIGNAL_TIMEOUT_MS = 15000
SSO_FIELD_TIMEOUT_MS = 10000
SSO_SIGNAL_TIMEOUT_MS = 30000
OPTIONAL_PROMPT_TIMEOUT_MS = 5000
SUBMIT_CLICK_TIMEOUT_MS = 2000

COMMON_SUBMIT_SELECTORS: Tuple[str, ...] = (
    'button[type="submit"]',
    'input[type="submit"]',
    ".login-button",
    "#login-button",
)

# Elements that commonly appear only once a user is signed in
LOGGED_IN_SELECTORS: Tuple[str, ...] = (
    ".dashboard",
    ".user-menu",
    '[data-testid="user-menu"]',
)

LOGIN_KEYWORDS: Tuple[str, ...] = ("login", "signin", "sign-in", "password", "username", "email")
LOGGED_IN_KEYWORDS: Tuple[str, ...] = ("logout", "sign out", "dashboard", "profile", "user", "account")


class AuthType(str, Enum):
    """Supported login strategies."""

    none = "none"
    basic = "basic"
    form = "form"
    sso = "sso"


class SSOProvider(str, Enum):
    """Identity providers with a known login UI."""

    microsoft = "microsoft"
    google = "google"
    okta = "okta"
    saml = "saml"
    other = "other"


class AuthConfigError(ValueError):
    """Raised when auth configuration is invalid."""


class AuthenticationFailed(RuntimeError):
    """Recoverable login failure: the audit proceeds unauthenticated."""


# camelCase keys accepted from tool/JSON input, mapped to field names
_FIELD_ALIASES: Dict[str, str] = {
    "ssoProvider": "sso_provider",
    "ssoUrl": "sso_url",
    "loginFormSelector": "login_form_selector",
    "usernameSelector": "username_selector",
    "passwordSelector": "password_selector",
    "submitSelector": "submit_selector",
    "waitForSelector": "wait_for_selector",
}

_STRING_FIELDS = (
    "username",
    "password",
    "sso_url",
    "login_form_selector",
    "username_selector",
    "password_selector",
    "submit_selector",
    "wait_for_selector",
)


@dataclass(frozen=True)
class AuthConfig:
    """Login configuration, tagged by ``type``.

    Only the fields relevant to the selected type are consulted:

    Attributes:
        type: Login strategy.
        username: Account name (basic, form, sso).
        password: Account password (basic, form, sso).
        sso_provider: Identity provider for ``sso``; unknown providers use
            the generic selector-driven flow.
        sso_url: Login URL of the identity provider (``sso``).
        login_form_selector: Optional container to wait for (``form``).
        username_selector: CSS selector of the username field.
        password_selector: CSS selector of the password field.
        submit_selector: CSS selector of the submit button.
        wait_for_selector: Element that proves the login succeeded.
        cookies: Cookie dicts with 'name', 'value' and optional 'domain',
            installed after any strategy (including ``none``).
    """

    type: AuthType = AuthType.none
    username: Optional[str] = None
    password: Optional[str] = None
    sso_provider: Optional[SSOProvider] = None
    sso_url: Optional[str] = None
    login_form_selector: Optional[str] = None
    username_selector: Optional[str] = None
    password_selector: Optional[str] = None
    submit_selector: Optional[str] = None
    wait_for_selector: Optional[str] = None
    cookies: Tuple[Dict[str, Any], ...] = ()

    @property
    def is_empty(self) -> bool:
        """Return True if neither a login strategy nor cookies are configured."""
        return self.type is AuthType.none and not self.cookies

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "AuthConfig":
        """Build an AuthConfig from tool/JSON input (camelCase or snake_case).

        Raises:
            AuthConfigError: On unknown keys, types, providers or malformed cookies.
        """
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise AuthConfigError("Auth configuration must be an object")

        values: Dict[str, Any] = {}
        unknown: List[str] = []
        known_fields = {"type", "cookies", "sso_provider", *_STRING_FIELDS}
        for key, value in data.items():
            name = _FIELD_ALIASES.get(key, key)
            if name not in known_fields:
                unknown.append(key)
                continue
            values[name] = value
        if unknown:
            raise AuthConfigError(f"Unsupported auth fields: {', '.join(sorted(unknown))}")

        try:
            auth_type = AuthType(str(values.get("type") or "none").lower())
        except ValueError as exc:
            raise AuthConfigError(
                f"Unknown auth type '{values.get('type')}' "
                f"(expected one of: {', '.join(t.value for t in AuthType)})"
            ) from exc

        provider = None
        if values.get("sso_provider"):
            try:
                provider = SSOProvider(str(values["sso_provider"]).lower())
            except ValueError as exc:
                raise AuthConfigError(
                    f"Unknown SSO provider '{values['sso_provider']}'"
                ) from exc

        for name in _STRING_FIELDS:
            value = values.get(name)
            if value is not None and not isinstance(value, str):
                raise AuthConfigError(f"Auth field '{name}' must be a string")

        return cls(
            type=auth_type,
            sso_provider=provider,
            cookies=_validate_cookies(values.get("cookies")),
            **{name: values.get(name) or None for name in _STRING_FIELDS},
        )

    def describe(self) -> Dict[str, Any]:
        """JSON-safe summary without secrets."""
        return {
            "type": self.type.value,
            "username": self.username,
            "password": "***" if self.password else None,
            "sso_provider": self.sso_provider.value if self.sso_provider else None,
            "sso_url": self.sso_url,
            "cookies": len(self.cookies),
        }


def _validate_cookies(raw: Any) -> Tuple[Dict[str, Any], ...]:
    if raw is None:
        return ()
    if isinstance(raw, Mapping):
        raw = [raw]
    if not isinstance(raw, list):
        raise AuthConfigError("cookies must be a list of objects")
    cookies = []
    for index, cookie in enumerate(raw):
        if not isinstance(cookie, Mapping):
            raise AuthConfigError(f"cookie #{index} must be an object")
        name = cookie.get("name")
        value = cookie.get("value")
        if not isinstance(name, str) or not name or not isinstance(value, str):
            raise AuthConfigError(f"cookie #{index} needs string 'name' and 'value'")
        cookies.append(dict(cookie))
    return tuple(cookies)


@dataclass
class AuthResult:
    """Outcome of ``authenticate``; never raised, always returned."""

    auth_type: AuthType
    attempted: bool = False
    succeeded: bool = False
    cookies_installed: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class LoginStep:
    """One "wait for field → type / click" step of a scripted login UI."""

    action: str  # "fill" or "click"
    selector: str
    credential: Optional[str] = None  # AuthConfig attribute typed into the field
    wait_ms: Optional[int] = None
    optional: bool = False


def _fill(selector: str, credential: str, wait_ms: Optional[int] = SSO_FIELD_TIMEOUT_MS) -> LoginStep:
    return LoginStep("fill", selector, credential=credential, wait_ms=wait_ms)


def _click(selector: str, *, wait_ms: Optional[int] = None, optional: bool = False) -> LoginStep:
    return LoginStep("click", selector, wait_ms=wait_ms, optional=optional)


PROVIDER_FLOWS: Dict[SSOProvider, Tuple[LoginStep, ...]] = {
    SSOProvider.microsoft: (
        _fill('input[type="email"]', "username"),
        _click('input[type="submit"]'),
        _fill('input[type="password"]', "password"),
        _click('input[type="submit"]'),
        # "Stay signed in?" prompt
        _click(
            'input[type="submit"][value="Yes"]',
            wait_ms=OPTIONAL_PROMPT_TIMEOUT_MS,
            optional=True,
        ),
    ),
    SSOProvider.google: (
        _fill('input[type="email"]', "username"),
        _click("#identifierNext"),
        _fill('input[type="password"]', "password"),
        _click("#passwordNext"),
    ),
    SSOProvider.okta: (
        _fill("#okta-signin-username", "username"),
        _fill("#okta-signin-password", "password", wait_ms=None),
        _click("#okta-signin-submit"),
    ),
}


async def _run_steps(session: BrowserSession, steps: Tuple[LoginStep, ...], config: AuthConfig) -> None:
    for step in steps:
        try:
            if step.wait_ms:
                await session.wait_for_selector(step.selector, timeout_ms=step.wait_ms)
            if step.action == "fill":
                await session.fill(step.selector, getattr(config, step.credential or "") or "")
            else:
                await session.click(step.selector)
        except BrowserSessionError as exc:
            if step.optional:
                LOGGER.debug("Optional login step '%s' skipped: %s", step.selector, exc)
                continue
            raise AuthenticationFailed(f"Login step '{step.selector}' failed: {exc}") from exc


async def _first_success(waiters: List[Awaitable[None]], timeout_ms: int) -> bool:
    """Await several signals concurrently; True as soon as one completes cleanly."""
    tasks = [asyncio.ensure_future(waiter) for waiter in waiters]
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_ms / 1000
    pending = set(tasks)
    try:
        while pending:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            done, pending = await asyncio.wait(
                pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                if not task.cancelled() and task.exception() is None:
                    return True
        return False
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def _wait_for_login_signal(
    session: BrowserSession,
    config: AuthConfig,
    timeout_ms: int,
    fallback_selectors: Tuple[str, ...] = (),
) -> None:
    if config.wait_for_selector:
        try:
            await session.wait_for_selector(config.wait_for_selector, timeout_ms=timeout_ms)
        except BrowserSessionError as exc:
            raise AuthenticationFailed(
                f"Post-login element '{config.wait_for_selector}' did not appear: {exc}"
            ) from exc
        return

    waiters: List[Awaitable[None]] = [session.wait_for_navigation(timeout_ms=timeout_ms)]
    waiters.extend(
        session.wait_for_selector(selector, timeout_ms=timeout_ms)
        for selector in fallback_selectors
    )
    if not await _first_success(waiters, timeout_ms):
        raise AuthenticationFailed(
            f"No post-login signal observed within {timeout_ms / 1000:.0f}s"
        )


async def _authenticate_none(session: BrowserSession, config: AuthConfig) -> bool:
    return False


async def _authenticate_basic(session: BrowserSession, config: AuthConfig) -> bool:
    if not config.has_credentials:
        LOGGER.warning("Basic authentication skipped: username and password are required")
        return False
    await session.set_basic_auth(config.username or "", config.password or "")
    LOGGER.info("Auth: basic credentials set for user %s", config.username)
    return True


async def _authenticate_form(session: BrowserSession, config: AuthConfig) -> bool:
    if not (config.has_credentials and config.username_selector and config.password_selector):
        LOGGER.warning(
            "Form authentication skipped: username, password, username_selector "
            "and password_selector are required"
        )
        return False

    if config.login_form_selector:
        await session.wait_for_selector(config.login_form_selector, timeout_ms=LOGIN_FORM_TIMEOUT_MS)

    steps = (
        _fill(config.username_selector, "username", wait_ms=FIELD_TIMEOUT_MS),
        _fill(config.password_selector, "password", wait_ms=FIELD_TIMEOUT_MS),
    )
    await _run_steps(session, steps, config)

    if config.submit_selector:
        await session.click(config.submit_selector)
    else:
        await _click_first_submit(session)

    await _wait_for_login_signal(
        session, config, FORM_SIGNAL_TIMEOUT_MS, fallback_selectors=LOGGED_IN_SELECTORS
    )
    LOGGER.info("Auth: form login completed for user %s", config.username)
    return True


async def _click_first_submit(session: BrowserSession) -> None:
    for selector in COMMON_SUBMIT_SELECTORS:
        try:
            await session.click(selector, timeout_ms=SUBMIT_CLICK_TIMEOUT_MS)
        except BrowserSessionError:
            continue
        LOGGER.debug("Submitted login form via %s", selector)
        return
    LOGGER.warning("No common submit button found; waiting for a login signal anyway")


async def _authenticate_sso(session: BrowserSession, config: AuthConfig) -> bool:
    if not config.sso_url:
        LOGGER.warning("SSO authentication skipped: sso_url is required")
        return False

    await session.goto(config.sso_url)

    steps = PROVIDER_FLOWS.get(config.sso_provider) if config.sso_provider else None
    if steps is not None:
        if not config.has_credentials:
            LOGGER.warning("SSO provider flow skipped: username and password are required")
        else:
            await _run_steps(session, steps, config)
    elif config.has_credentials and config.username_selector and config.password_selector:
        generic: List[LoginStep] = [
            _fill(config.username_selector, "username"),
            _fill(config.password_selector, "password", wait_ms=None),
        ]
        if config.submit_selector:
            generic.append(_click(config.submit_selector))
        await _run_steps(session, tuple(generic), config)

    await _wait_for_login_signal(session, config, SSO_SIGNAL_TIMEOUT_MS)
    LOGGER.info(
        "Auth: SSO login completed via %s",
        config.sso_provider.value if config.sso_provider else "generic flow",
    )
    return True


_HANDLERS: Dict[AuthType, Callable[[BrowserSession, AuthConfig], Awaitable[bool]]] = {
    AuthType.none: _authenticate_none,
    AuthType.basic: _authenticate_basic,
    AuthType.form: _authenticate_form,
    AuthType.sso: _authenticate_sso,
}


async def authenticate(session: BrowserSession, config: Optional[AuthConfig] = None) -> AuthResult:
    """Bring *session* into an authenticated state.

    The session is mutated in place. Login failures never propagate: they are
    logged and reported via ``AuthResult.error`` so that the analysis can
    continue unauthenticated. Configured cookies are installed afterwards in
    every case.

    Args:
        session: The live browsing session.
        config: Login configuration; None means no authentication.

    Returns:
        AuthResult describing what was attempted and whether it worked.
    """
    config = config or AuthConfig()
    result = AuthResult(auth_type=config.type)

    try:
        result.attempted = await _HANDLERS[config.type](session, config)
    except (AuthenticationFailed, BrowserSessionError) as exc:
        result.attempted = True
        result.error = str(exc)
        LOGGER.warning("Authentication failed (%s): %s", config.type.value, exc)

    if config.cookies:
        try:
            await session.add_cookies([dict(cookie) for cookie in config.cookies])
            result.cookies_installed = len(config.cookies)
        except BrowserSessionError as exc:
            LOGGER.warning("Failed to install auth cookies: %s", exc)
            result.error = result.error or f"Failed to install cookies: {exc}"

    result.succeeded = result.error is None and (result.attempted or result.cookies_installed > 0)
    return result


@dataclass
class SessionSnapshot:
    """Observable session state used to judge whether a login worked."""

    url: str
    title: str
    keywords_found: List[str] = field(default_factory=list)

    @property
    def has_keywords(self) -> bool:
        return bool(self.keywords_found)


async def take_snapshot(session: BrowserSession, keywords: Tuple[str, ...]) -> SessionSnapshot:
    """Record URL, title and which of *keywords* occur in the page body markup."""
    title = await session.title()
    soup = BeautifulSoup(await session.content(), "html.parser")
    markup = str(soup.body if soup.body is not None else soup).lower()
    return SessionSnapshot(
        url=session.url,
        title=title,
        keywords_found=[keyword for keyword in keywords if keyword in markup],
    )


def load_auth_from_env() -> Optional[AuthConfig]:
    """Load auth configuration from environment variables.

    Supported variables:
        AUDIT_AUTH_TYPE: none, basic, form or sso.
        AUDIT_AUTH_USERNAME / AUDIT_AUTH_PASSWORD: Credentials.
        AUDIT_AUTH_SSO_PROVIDER / AUDIT_AUTH_SSO_URL: SSO settings.
        AUDIT_AUTH_LOGIN_FORM_SELECTOR, AUDIT_AUTH_USERNAME_SELECTOR,
        AUDIT_AUTH_PASSWORD_SELECTOR, AUDIT_AUTH_SUBMIT_SELECTOR,
        AUDIT_AUTH_WAIT_FOR_SELECTOR: Form selectors.
        AUDIT_AUTH_COOKIES_FILE: Path to cookies JSON file (list of dicts).

    Returns:
        AuthConfig if any of AUDIT_AUTH_TYPE / AUDIT_AUTH_COOKIES_FILE is set,
        None otherwise.
    """
    auth_type = os.environ.get("AUDIT_AUTH_TYPE")
    cookies_file = os.environ.get("AUDIT_AUTH_COOKIES_FILE")

    if not any([auth_type, cookies_file]):
        return None

    cookies = None
    if cookies_file:
        path = Path(cookies_file).expanduser()
        if path.is_file():
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    cookies = json.load(fh)
            except json.JSONDecodeError as exc:
                raise AuthConfigError(f"Cookies file contains invalid JSON: {path}") from exc
        else:
            LOGGER.warning("Cookies file not found: %s", path)

    data: Dict[str, Any] = {"type": auth_type or "none", "cookies": cookies}
    for name in ("sso_provider", *_STRING_FIELDS):
        value = os.environ.get(f"AUDIT_AUTH_{name.upper()}")
        if value:
            data[name] = value
    config = AuthConfig.from_dict(data)
    if config.cookies:
        LOGGER.info("Loaded %d cookie(s) from %s", len(config.cookies), cookies_file)
    return config


def load_auth_from_file(path: str) -> AuthConfig:
    """Load auth configuration from a JSON config file.

    The file holds the same object accepted by ``AuthConfig.from_dict``.

    Raises:
        FileNotFoundError: If the file does not exist.
        AuthConfigError: If the file is not valid JSON or not a valid config.
    """
    config_path = Path(path).expanduser()
    if not config_path.is_file():
        raise FileNotFoundError(f"Auth config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise AuthConfigError(f"Auth config file contains invalid JSON: {config_path}") from exc

    return AuthConfig.from_dict(data)
