"""Tests for auth configuration parsing and login flows."""

from __future__ import annotations

import asyncio
import json

import pytest

from auditor.auth import (
    COMMON_SUBMIT_SELECTORS,
    LOGGED_IN_KEYWORDS,
    LOGIN_KEYWORDS,
    AuthConfig,
    AuthConfigError,
    AuthType,
    SSOProvider,
    _first_success,
    authenticate,
    load_auth_from_env,
    load_auth_from_file,
    take_snapshot,
)
from conftest import FakeSession

FORM = {
    "type": "form",
    "username": "user@example.com",
    "password": "secret",
    "usernameSelector": "#email",
    "passwordSelector": "#password",
}


class TestAuthConfigFromDict:
    def test_none(self):
        config = AuthConfig.from_dict(None)
        assert config.type is AuthType.none
        assert config.is_empty

    def test_camel_case_keys(self):
        config = AuthConfig.from_dict(
            {
                **FORM,
                "submitSelector": "#go",
                "waitForSelector": ".dashboard",
                "loginFormSelector": "form#login",
            }
        )
        assert config.type is AuthType.form
        assert config.username_selector == "#email"
        assert config.password_selector == "#password"
        assert config.submit_selector == "#go"
        assert config.wait_for_selector == ".dashboard"
        assert config.login_form_selector == "form#login"

    def test_snake_case_keys(self):
        config = AuthConfig.from_dict({"type": "sso", "sso_provider": "Okta", "sso_url": "https://id.example.com"})
        assert config.sso_provider is SSOProvider.okta
        assert config.sso_url == "https://id.example.com"

    def test_unknown_type(self):
        with pytest.raises(AuthConfigError, match="Unknown auth type"):
            AuthConfig.from_dict({"type": "kerberos"})

    def test_unknown_provider(self):
        with pytest.raises(AuthConfigError, match="Unknown SSO provider"):
            AuthConfig.from_dict({"type": "sso", "ssoProvider": "myspace"})

    def test_unknown_fields(self):
        with pytest.raises(AuthConfigError, match="Unsupported auth fields: token"):
            AuthConfig.from_dict({"type": "basic", "token": "abc"})

    def test_non_string_field(self):
        with pytest.raises(AuthConfigError, match="must be a string"):
            AuthConfig.from_dict({"type": "basic", "username": 42})

    def test_not_a_mapping(self):
        with pytest.raises(AuthConfigError, match="must be an object"):
            AuthConfig.from_dict(["basic"])  # type: ignore[arg-type]

    def test_cookies(self):
        config = AuthConfig.from_dict(
            {"cookies": [{"name": "sid", "value": "abc", "domain": ".example.com"}]}
        )
        assert config.type is AuthType.none
        assert not config.is_empty
        assert config.cookies == ({"name": "sid", "value": "abc", "domain": ".example.com"},)

    def test_single_cookie_object(self):
        config = AuthConfig.from_dict({"cookies": {"name": "sid", "value": "abc"}})
        assert len(config.cookies) == 1

    @pytest.mark.parametrize(
        "cookies",
        ["sid=abc", [{"name": "sid"}], [{"name": "", "value": "x"}], ["sid"]],
    )
    def test_malformed_cookies(self, cookies):
        with pytest.raises(AuthConfigError, match="cookie"):
            AuthConfig.from_dict({"cookies": cookies})

    def test_describe_masks_password(self):
        summary = AuthConfig.from_dict(FORM).describe()
        assert summary["password"] == "***"
        assert "secret" not in json.dumps(summary)


class TestAuthenticateBasicAndNone:
    @pytest.mark.asyncio
    async def test_none_is_noop(self):
        session = FakeSession()

        result = await authenticate(session, None)

        assert session.calls == []
        assert result.attempted is False
        assert result.succeeded is False
        assert result.error is None

    @pytest.mark.asyncio
    async def test_cookies_installed_for_none(self):
        session = FakeSession()
        config = AuthConfig.from_dict({"cookies": [{"name": "sid", "value": "abc"}]})

        result = await authenticate(session, config)

        assert session.cookies == [{"name": "sid", "value": "abc"}]
        assert result.cookies_installed == 1
        assert result.succeeded is True

    @pytest.mark.asyncio
    async def test_basic_sets_credentials(self):
        session = FakeSession()
        config = AuthConfig.from_dict({"type": "basic", "username": "u", "password": "p"})

        result = await authenticate(session, config)

        assert session.basic_auth == ("u", "p")
        assert result.attempted is True
        assert result.succeeded is True

    @pytest.mark.asyncio
    async def test_basic_without_password_is_skipped(self):
        session = FakeSession()

        result = await authenticate(session, AuthConfig.from_dict({"type": "basic", "username": "u"}))

        assert session.basic_auth is None
        assert result.attempted is False
        assert result.error is None


class TestAuthenticateForm:
    @pytest.mark.asyncio
    async def test_missing_username_selector_attempts_nothing(self):
        session = FakeSession(selectors={"#password", "#email"})
        config = AuthConfig.from_dict({k: v for k, v in FORM.items() if k != "usernameSelector"})

        result = await authenticate(session, config)

        assert session.actions("fill") == []
        assert session.actions("click") == []
        assert result.attempted is False
        assert result.error is None

    @pytest.mark.asyncio
    async def test_full_flow_with_configured_selectors(self):
        session = FakeSession(selectors={"form#login", "#email", "#password", "#go", ".welcome"})
        config = AuthConfig.from_dict(
            {
                **FORM,
                "loginFormSelector": "form#login",
                "submitSelector": "#go",
                "waitForSelector": ".welcome",
            }
        )

        result = await authenticate(session, config)

        assert result.succeeded is True
        assert session.filled == {"#email": "user@example.com", "#password": "secret"}
        assert session.actions("click") == ["#go"]
        assert session.actions("wait_for_selector") == ["form#login", "#email", "#password", ".welcome"]

    @pytest.mark.asyncio
    async def test_common_submit_selectors_in_order(self):
        session = FakeSession(selectors={"#email", "#password", 'input[type="submit"]'}, navigates=True)

        result = await authenticate(session, AuthConfig.from_dict(FORM))

        assert result.succeeded is True
        assert session.actions("click") == list(COMMON_SUBMIT_SELECTORS[:2])

    @pytest.mark.asyncio
    async def test_logged_in_selector_wins_race(self):
        session = FakeSession(selectors={"#email", "#password", 'button[type="submit"]', ".user-menu"})

        result = await authenticate(session, AuthConfig.from_dict(FORM))

        assert result.succeeded is True
        assert result.error is None

    @pytest.mark.asyncio
    async def test_no_login_signal_is_recoverable(self):
        session = FakeSession(selectors={"#email", "#password", 'button[type="submit"]'})
        config = AuthConfig.from_dict({**FORM, "cookies": [{"name": "sid", "value": "abc"}]})

        result = await authenticate(session, config)

        assert result.attempted is True
        assert result.succeeded is False
        assert "No post-login signal" in result.error
        # Cookies are still installed after a failed login
        assert result.cookies_installed == 1

    @pytest.mark.asyncio
    async def test_missing_field_is_recoverable(self):
        session = FakeSession(selectors={"#email"})

        result = await authenticate(session, AuthConfig.from_dict(FORM))

        assert result.succeeded is False
        assert "#password" in result.error

    @pytest.mark.asyncio
    async def test_wait_for_selector_timeout(self):
        session = FakeSession(selectors={"#email", "#password", "#go"}, navigates=True)
        config = AuthConfig.from_dict({**FORM, "submitSelector": "#go", "waitForSelector": ".never"})

        result = await authenticate(session, config)

        assert result.succeeded is False
        assert ".never" in result.error


class TestAuthenticateSSO:
    @pytest.mark.asyncio
    async def test_missing_sso_url_is_skipped(self):
        session = FakeSession()
        config = AuthConfig.from_dict({"type": "sso", "username": "u", "password": "p"})

        result = await authenticate(session, config)

        assert session.calls == []
        assert result.attempted is False

    @pytest.mark.asyncio
    async def test_microsoft_flow(self):
        session = FakeSession(
            selectors={'input[type="email"]', 'input[type="password"]', 'input[type="submit"]'},
            navigates=True,
        )
        config = AuthConfig.from_dict(
            {
                "type": "sso",
                "ssoProvider": "microsoft",
                "ssoUrl": "https://login.microsoftonline.com/",
                "username": "u@example.com",
                "password": "p",
            }
        )

        result = await authenticate(session, config)

        assert session.actions("goto") == ["https://login.microsoftonline.com/"]
        assert session.filled == {'input[type="email"]': "u@example.com", 'input[type="password"]': "p"}
        # The optional "Stay signed in?" prompt never appeared
        assert session.actions("click") == ['input[type="submit"]', 'input[type="submit"]']
        assert result.succeeded is True

    @pytest.mark.asyncio
    async def test_okta_flow(self):
        session = FakeSession(
            selectors={"#okta-signin-username", "#okta-signin-password", "#okta-signin-submit"},
            navigates=True,
        )
        config = AuthConfig.from_dict(
            {
                "type": "sso",
                "ssoProvider": "okta",
                "ssoUrl": "https://example.okta.com/login",
                "username": "u@example.com",
                "password": "p",
            }
        )

        result = await authenticate(session, config)

        assert session.actions("goto") == ["https://example.okta.com/login"]
        assert session.filled == {"#okta-signin-username": "u@example.com", "#okta-signin-password": "p"}
        # Only the username field is waited for
        assert session.actions("wait_for_selector") == ["#okta-signin-username"]
        assert session.actions("click") == ["#okta-signin-submit"]
        assert result.succeeded is True

    @pytest.mark.asyncio
    async def test_google_flow_without_signal_fails(self):
        session = FakeSession(
            selectors={'input[type="email"]', 'input[type="password"]', "#identifierNext", "#passwordNext"}
        )
        config = AuthConfig.from_dict(
            {
                "type": "sso",
                "ssoProvider": "google",
                "ssoUrl": "https://accounts.google.com/",
                "username": "u@example.com",
                "password": "p",
            }
        )

        result = await authenticate(session, config)

        assert session.actions("click") == ["#identifierNext", "#passwordNext"]
        assert result.succeeded is False
        assert result.error

    @pytest.mark.asyncio
    async def test_generic_flow_uses_caller_selectors(self):
        session = FakeSession(selectors={"#user", "#pass", "#login", ".home"})
        config = AuthConfig.from_dict(
            {
                "type": "sso",
                "ssoProvider": "saml",
                "ssoUrl": "https://idp.example.com/",
                "username": "u",
                "password": "p",
                "usernameSelector": "#user",
                "passwordSelector": "#pass",
                "submitSelector": "#login",
                "waitForSelector": ".home",
            }
        )

        result = await authenticate(session, config)

        assert session.filled == {"#user": "u", "#pass": "p"}
        assert session.actions("click") == ["#login"]
        assert result.succeeded is True


class TestFirstSuccess:
    @pytest.mark.asyncio
    async def test_first_clean_completion_wins(self):
        cancelled = []

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append("slow")
                raise

        async def fast():
            return None

        assert await _first_success([slow(), fast()], timeout_ms=1000) is True
        assert cancelled == ["slow"]

    @pytest.mark.asyncio
    async def test_all_failures(self):
        async def boom():
            raise RuntimeError("no")

        assert await _first_success([boom(), boom()], timeout_ms=1000) is False

    @pytest.mark.asyncio
    async def test_deadline(self):
        async def slow():
            await asyncio.sleep(10)

        assert await _first_success([slow()], timeout_ms=20) is False


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_keywords_found(self):
        session = FakeSession(
            {"https://example.com/": "<html><head><title>Home</title></head><body><a>Logout</a> Profile</body></html>"}
        )
        await session.goto("https://example.com/")

        snapshot = await take_snapshot(session, LOGGED_IN_KEYWORDS)

        assert snapshot.url == "https://example.com/"
        assert snapshot.title == "Home"
        assert snapshot.keywords_found == ["logout", "profile"]
        assert snapshot.has_keywords

    @pytest.mark.asyncio
    async def test_no_keywords(self):
        session = FakeSession({"https://example.com/": "<html><body>Hello</body></html>"})
        await session.goto("https://example.com/")

        snapshot = await take_snapshot(session, LOGIN_KEYWORDS)

        assert not snapshot.has_keywords

    @pytest.mark.asyncio
    async def test_head_is_not_scanned(self):
        html = (
            '<html><head><title>Sign in</title><meta name="description" content="user account portal">'
            "<script>var profile = null;</script></head><body><p>Welcome</p></body></html>"
        )
        session = FakeSession({"https://example.com/": html})
        await session.goto("https://example.com/")

        snapshot = await take_snapshot(session, LOGGED_IN_KEYWORDS)

        assert snapshot.keywords_found == []


class TestLoadAuth:
    def test_env_not_configured(self):
        assert load_auth_from_env() is None

    def test_env_form(self, monkeypatch):
        monkeypatch.setenv("AUDIT_AUTH_TYPE", "form")
        monkeypatch.setenv("AUDIT_AUTH_USERNAME", "user")
        monkeypatch.setenv("AUDIT_AUTH_PASSWORD", "pw")
        monkeypatch.setenv("AUDIT_AUTH_USERNAME_SELECTOR", "#u")
        monkeypatch.setenv("AUDIT_AUTH_PASSWORD_SELECTOR", "#p")

        config = load_auth_from_env()

        assert config is not None
        assert config.type is AuthType.form
        assert config.username == "user"
        assert config.username_selector == "#u"
        assert config.password_selector == "#p"

    def test_env_cookies_file(self, monkeypatch, tmp_path):
        cookies = tmp_path / "cookies.json"
        cookies.write_text(json.dumps([{"name": "sid", "value": "1"}]))
        monkeypatch.setenv("AUDIT_AUTH_COOKIES_FILE", str(cookies))

        config = load_auth_from_env()

        assert config is not None
        assert config.type is AuthType.none
        assert config.cookies == ({"name": "sid", "value": "1"},)

    def test_env_cookies_file_invalid_json(self, monkeypatch, tmp_path):
        cookies = tmp_path / "cookies.json"
        cookies.write_text("[{broken")
        monkeypatch.setenv("AUDIT_AUTH_COOKIES_FILE", str(cookies))

        with pytest.raises(AuthConfigError, match="invalid JSON"):
            load_auth_from_env()

    def test_file(self, tmp_path):
        path = tmp_path / "auth.json"
        path.write_text(json.dumps({"type": "basic", "username": "u", "password": "p"}))

        config = load_auth_from_file(str(path))

        assert config.type is AuthType.basic
        assert config.has_credentials

    def test_file_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_auth_from_file(str(tmp_path / "missing.json"))

    def test_file_invalid_json(self, tmp_path):
        path = tmp_path / "auth.json"
        path.write_text("{not json")
        with pytest.raises(AuthConfigError, match="invalid JSON"):
            load_auth_from_file(str(path))
