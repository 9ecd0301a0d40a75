"""
POP3 OAuth2 Authentication

OAuth2 token acquisition for Microsoft and Google POP3 servers, used with
AUTH XOAUTH2. Dispatches to provider-specific modules (oauth2_microsoft,
oauth2_google).

Provider is auto-detected from the POP3 host string.
"""

import sys

from auth import oauth2_google, oauth2_microsoft

PROVIDER_MICROSOFT = "microsoft"
PROVIDER_GOOGLE = "google"


def detect_oauth2_provider(host):
    """
    Detects the OAuth2 provider from the POP3 host.
    Returns "microsoft", "google", or None if unrecognized.
    """
    host_lower = host.lower()
    if "outlook" in host_lower or "office365" in host_lower or "microsoft" in host_lower:
        return PROVIDER_MICROSOFT
    if "gmail" in host_lower or "google" in host_lower:
        return PROVIDER_GOOGLE
    return None


def acquire_oauth2_token_for_provider(provider, client_id, email, client_secret=None):
    """
    Acquires an OAuth2 token for the specified provider.

    Args:
        provider: "microsoft" or "google"
        client_id: OAuth2 client ID
        email: User's email address (used for Microsoft tenant discovery)
        client_secret: Required for Google, not needed for Microsoft
    """
    if provider == PROVIDER_MICROSOFT:
        return oauth2_microsoft.acquire_token(client_id, email)
    if provider == PROVIDER_GOOGLE:
        if not client_secret:
            print(
                "Error: OAuth2 client secret is required for Google OAuth2. "
                "Provide --oauth2-client-secret or set OAUTH2_CLIENT_SECRET."
            )
            return None
        return oauth2_google.acquire_token(client_id, client_secret)
    print(f"Error: Unknown OAuth2 provider: {provider}")
    return None


def acquire_token(host, client_id, email, client_secret=None, label=None):
    """
    Detect the OAuth2 provider from the host and acquire a token.

    Prints status messages and calls sys.exit(1) on failure.

    Returns:
        (token, provider) tuple on success.
    """
    provider = detect_oauth2_provider(host)
    if not provider:
        print(f"Error: Could not detect OAuth2 provider from host '{host}'.")
        sys.exit(1)

    target = f" for {label}" if label else ""
    print(f"Acquiring OAuth2 token{target} ({provider})...")
    token = acquire_oauth2_token_for_provider(provider, client_id, email, client_secret)
    if not token:
        print(f"Error: Failed to acquire OAuth2 token{target}.")
        sys.exit(1)
    print("OAuth2 token acquired successfully.\n")
    return token, provider


def auth_description(provider):
    """Human-readable auth method for the configuration summary."""
    if provider:
        return f"OAuth2/{provider} (XOAUTH2)"
    return "Basic (USER/PASS)"
