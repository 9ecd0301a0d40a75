"""
Microsoft OAuth2 Token Acquisition

Access tokens for Outlook / Microsoft 365 POP3 via the MSAL device code flow.
The tenant ID is read from the OpenID configuration of the mailbox's domain.

Requires the 'msal' package: pip install msal
"""

import http.client
import json
import re
import ssl
import sys
import urllib.parse

POP_SCOPES = ["https://outlook.office365.com/POP.AccessAsUser.All"]
LOGIN_HOST = "login.microsoftonline.com"

TENANT_ID_RE = re.compile(r"/([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})")

_tenant_cache = {}  # domain -> tenant_id


def _get_openid_configuration(domain, timeout=10):
    """GET the tenant's OpenID configuration document from the Microsoft login host."""
    path = f"/{urllib.parse.quote(domain, safe='.-')}/.well-known/openid-configuration"
    conn = http.client.HTTPSConnection(LOGIN_HOST, timeout=timeout, context=ssl.create_default_context())
    try:
        conn.request("GET", path, headers={"Accept": "application/json"})
        response = conn.getresponse()
        body = response.read()
    finally:
        conn.close()

    if response.status != 200:
        raise RuntimeError(f"HTTP {response.status} from {LOGIN_HOST}")
    return json.loads(body.decode("utf-8"))


def discover_tenant(email):
    """Returns the tenant ID for the domain of ``email`` (cached per domain), or None."""
    domain = email.rpartition("@")[2].strip().lower()
    if not domain:
        print("Error: Could not discover Microsoft tenant: missing email domain")
        return None
    if domain not in _tenant_cache:
        try:
            config = _get_openid_configuration(domain)
        except (OSError, http.client.HTTPException, RuntimeError, ValueError) as e:
            print(f"Error: Could not discover Microsoft tenant for domain '{domain}': {e}")
            return None

        match = TENANT_ID_RE.search(config.get("issuer", ""))
        if not match:
            print(f"Error: Could not extract tenant ID from issuer: {config.get('issuer', '')}")
            return None
        _tenant_cache[domain] = match.group(1)
    return _tenant_cache[domain]


def acquire_token(client_id, email):
    """
    Acquires an access token with the POP scope using the device code flow.
    The user is shown a code and a URL to complete sign-in.
    """
    tenant_id = discover_tenant(email)
    if not tenant_id:
        return None

    try:
        import msal
    except ImportError:
        print("Error: 'msal' package is required for Microsoft OAuth2. Install it with: pip install msal")
        sys.exit(1)

    app = msal.PublicClientApplication(client_id, authority=f"https://{LOGIN_HOST}/{tenant_id}")
    print(f"Discovered Microsoft tenant: {tenant_id}")

    flow = app.initiate_device_flow(scopes=POP_SCOPES)
    if "user_code" not in flow:
        print(f"Error: Could not initiate device flow: {flow.get('error_description', 'Unknown error')}")
        return None

    print(flow["message"])
    result = app.acquire_token_by_device_flow(flow)
    if "access_token" in result:
        return result["access_token"]

    print(f"Error: Could not acquire token: {result.get('error_description', 'Unknown error')}")
    return None
