"""Authentication-related CLI argument helpers."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .auth import AuthConfig, AuthType, SSOProvider, load_auth_from_env, load_auth_from_file

# argparse dest -> AuthConfig field
_ARG_FIELDS = (
    "username",
    "password",
    "sso_provider",
    "sso_url",
    "login_form_selector",
    "username_selector",
    "password_selector",
    "submit_selector",
    "wait_for_selector",
)


def _parse_cookies(value: str) -> Optional[Any]:
    if value.startswith("[") or value.startswith("{"):
        return json.loads(value)
    if Path(value).is_file():
        with open(value, "r", encoding="utf-8") as fh:
            return json.load(fh)
    logging.error("Invalid --cookies value: %s", value)
    return None


def build_cli_auth(
    args: argparse.Namespace,
    auth_loader: Callable[[], Optional[AuthConfig]] = load_auth_from_env,
) -> Optional[AuthConfig]:
    """Build AuthConfig from CLI arguments, falling back to env vars.

    ``--auth-config`` wins over everything; explicit flags come next; the
    ``AUDIT_AUTH_*`` environment is used when no auth flag was given.

    Raises:
        AuthConfigError: If the resulting configuration is invalid.
    """
    config_file = getattr(args, "auth_config", None)
    if config_file:
        return load_auth_from_file(config_file)

    data: Dict[str, Any] = {}
    for name in _ARG_FIELDS:
        value = getattr(args, name, None)
        if value:
            data[name] = value

    cookies_val = getattr(args, "cookies", None)
    if cookies_val:
        cookies = _parse_cookies(cookies_val)
        if cookies is not None:
            data["cookies"] = cookies

    auth_type = getattr(args, "auth_type", None)
    if auth_type or data:
        data["type"] = auth_type or AuthType.none.value
        return AuthConfig.from_dict(data)

    return auth_loader()


def add_auth_args(parser: argparse.ArgumentParser) -> None:
    """Add authentication arguments to an argparse parser."""
    auth_group = parser.add_argument_group("authentication")
    auth_group.add_argument(
        "--auth-type",
        choices=[t.value for t in AuthType],
        default=None,
        help="Login strategy (default: none, or AUDIT_AUTH_TYPE)",
    )
    auth_group.add_argument(
        "--auth-config",
        type=str,
        default=None,
        help="Path to a JSON file with the full authentication configuration",
    )
    auth_group.add_argument("--username", type=str, default=None, help="Login username")
    auth_group.add_argument(
        "--password",
        type=str,
        default=None,
        help="Login password (prefer AUDIT_AUTH_PASSWORD to keep it out of shell history)",
    )
    auth_group.add_argument(
        "--sso-provider",
        choices=[p.value for p in SSOProvider],
        default=None,
        help="SSO identity provider",
    )
    auth_group.add_argument("--sso-url", type=str, default=None, help="SSO login URL")
    auth_group.add_argument(
        "--login-form-selector",
        type=str,
        default=None,
        help="CSS selector of the login form container to wait for",
    )
    auth_group.add_argument(
        "--username-selector", type=str, default=None, help="CSS selector of the username field"
    )
    auth_group.add_argument(
        "--password-selector", type=str, default=None, help="CSS selector of the password field"
    )
    auth_group.add_argument(
        "--submit-selector", type=str, default=None, help="CSS selector of the submit button"
    )
    auth_group.add_argument(
        "--wait-for-selector",
        type=str,
        default=None,
        help="CSS selector that appears once logged in",
    )
    auth_group.add_argument(
        "--cookies",
        type=str,
        default=None,
        help='Cookies as JSON string or path to cookies JSON file. '
             'Example: \'[{"name":"sid","value":"abc","domain":".example.com"}]\'',
    )
