"""
Google OAuth2 Token Acquisition

Access tokens for Gmail POP3 using the installed-app flow: a browser opens for
consent and a local HTTP server receives the redirect.

Requires the 'google-auth-oauthlib' package: pip install google-auth-oauthlib
"""

import os
import sys

GMAIL_SCOPES = ["https://mail.google.com/"]


def _client_config(client_id, client_secret):
    return {
        "installed": {
            "client_id": client_id,
            "client_secret": client_secret,
            "auth_uri": os.getenv("OAUTH2_GOOGLE_AUTH_URL") or "https://accounts.google.com/o/oauth2/auth",
            "token_uri": os.getenv("OAUTH2_GOOGLE_TOKEN_URL") or "https://oauth2.googleapis.com/token",
            "redirect_uris": ["http://localhost"],
        }
    }


def acquire_token(client_id, client_secret):
    """Runs the installed-app flow and returns the access token, or None."""
    try:
        from google_auth_oauthlib.flow import InstalledAppFlow
    except ImportError:
        print("Error: 'google-auth-oauthlib' package is required for Google OAuth2.")
        print("Install it with: pip install google-auth-oauthlib")
        sys.exit(1)

    flow = InstalledAppFlow.from_client_config(_client_config(client_id, client_secret), scopes=GMAIL_SCOPES)

    print("Opening browser for Google authentication...")
    print("If the browser does not open, check the terminal for a URL to visit.")
    credentials = flow.run_local_server(port=0)

    if credentials and credentials.token:
        return credentials.token

    print("Error: Could not acquire Google OAuth2 token.")
    return None
