# ================================================================
# File     : client.py
# Purpose  : Microsoft Graph API read-only client for Entra (Azure AD)
# Notes    : Read-only: GET + pagination + retries. No destructive ops.
#            - Auto-refresh token on 401
#            - Proactive refresh if token expires in <5 minutes
#            - Safe to share between expansion worker threads
# ================================================================

import os
import time
import getpass
import threading
from typing import Dict, Any, List, Optional

import msal
import requests

from privpoodle.core.errors import UpstreamFetchError, NotFoundError
from privpoodle.core.utils import fncPrintMessage, fncRetry

GRAPH_ROOT = "https://graph.microsoft.com/v1.0"
REQUEST_TIMEOUT = 60


class GraphClient:
    def __init__(
        self,
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        authority_host: str = "https://login.microsoftonline.com",
        interactive: bool = True,
    ):
        # Try environment variables first
        tenant_id = tenant_id or os.getenv("PRIVPOODLE_TENANT_ID")
        client_id = client_id or os.getenv("PRIVPOODLE_CLIENT_ID")
        client_secret = client_secret or os.getenv("PRIVPOODLE_CLIENT_SECRET")

        # Prompt interactively if any credential is missing
        if interactive:
            if not tenant_id:
                tenant_id = input("Enter Tenant ID: ").strip()
            if not client_id:
                client_id = input("Enter Application (Client) ID: ").strip()
            if not client_secret:
                fncPrintMessage(
                    "No Client Secret found *Hidden* "
                    "Credentials are stored in environment only for this session.",
                    "warn",
                )
                client_secret = getpass.getpass("Enter Client Secret (input hidden): ").strip()

        if not all([tenant_id, client_id, client_secret]):
            raise UpstreamFetchError("Tenant ID, client ID and client secret are all required")

        # Persist to environment for the lifetime of the session
        os.environ["PRIVPOODLE_TENANT_ID"] = tenant_id
        os.environ["PRIVPOODLE_CLIENT_ID"] = client_id
        os.environ["PRIVPOODLE_CLIENT_SECRET"] = client_secret

        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret

        # Application scope (app-only). Needs RoleManagement.Read.Directory,
        # Directory.Read.All, and AuditLog.Read.All for sign-in activity.
        self.scope = ["https://graph.microsoft.com/.default"]
        self.authority = f"{authority_host.rstrip('/')}/{tenant_id}"

        fncPrintMessage("Initialising Microsoft Graph (read-only) client...", "info")

        self.app = msal.ConfidentialClientApplication(
            client_id=self.client_id,
            client_credential=self.client_secret,
            authority=self.authority,
        )

        self._token_lock = threading.Lock()
        self.token: str = ""
        self._token_expires_on: int = 0  # epoch seconds
        self._set_token(self._acquire_token())

        fncPrintMessage("GraphClient initialised (read-only).", "success")

    # ---------- Token helpers ----------

    def _acquire_token(self) -> Dict[str, Any]:
        """Acquire a token using MSAL (silent -> client creds). Returns MSAL result dict."""
        fncPrintMessage("Requesting Microsoft Graph access token...", "debug")
        result = self.app.acquire_token_silent(self.scope, account=None)
        if not result:
            result = self.app.acquire_token_for_client(scopes=self.scope)
        if "access_token" not in result:
            fncPrintMessage(
                f"MSAL Authentication failed: {result.get('error_description', 'Unknown error')}",
                "error",
            )
            raise UpstreamFetchError("Failed to acquire access token", status=401)
        return result

    def _set_token(self, msal_result: Dict[str, Any]) -> None:
        """Store token and expiry from MSAL result."""
        self.token = msal_result["access_token"]
        try:
            self._token_expires_on = int(msal_result.get("expires_on") or 0)
        except (TypeError, ValueError):
            self._token_expires_on = 0
        if not self._token_expires_on:
            self._token_expires_on = int(time.time()) + int(msal_result.get("expires_in", 3600))

    def _refresh_token(self) -> None:
        with self._token_lock:
            self._set_token(self._acquire_token())

    def _ensure_fresh_token(self) -> None:
        """Proactively refresh token if it expires in <5 minutes."""
        now = int(time.time())
        if now >= (self._token_expires_on - 300):
            fncPrintMessage("Refreshing access token (nearing expiry)...", "debug")
            self._refresh_token()

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            # Needed for $filter on schedule instances with $expand
            "ConsistencyLevel": "eventual",
        }

    # ---------- HTTP handling ----------

    def _resend(self, response: requests.Response) -> requests.Response:
        req = response.request
        try:
            return requests.request(method=req.method, url=req.url, headers=self._auth_headers(),
                                    data=req.body, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as ex:
            raise UpstreamFetchError(f"Graph request to {req.url} failed on resend: {ex}")

    def _handle_response(self, response: requests.Response, _retried: bool = False) -> Dict[str, Any]:
        status = response.status_code

        # Success
        if status == 200:
            return response.json()

        # Rate limit
        if status == 429:
            retry_after = int(response.headers.get("Retry-After", 5))
            fncPrintMessage(f"Rate limit hit. Sleeping for {retry_after}s...", "warn")
            time.sleep(retry_after)
            return self._handle_response(self._resend(response))

        # Unauthorized (refresh and retry once)
        if status == 401 and not _retried:
            code, msg = _error_parts(response)
            if "InvalidAuthenticationToken" in code or "expired" in msg.lower():
                fncPrintMessage("Access token expired, Attempting Refresh.", "warn")
                self._refresh_token()
                return self._handle_response(self._resend(response), _retried=True)

        if status == 404:
            raise NotFoundError(f"Graph object not found: {response.request.url if response.request else ''}")

        if status >= 400:
            code, msg = _error_parts(response)
            fncPrintMessage(f"Graph API Error [{status}] -> {code or ''} {msg or response.text}", "debug")
            err_cls = GraphClientError if status < 500 else UpstreamFetchError
            raise err_cls(f"Graph API request failed with status {status}: {code} {msg}".strip(),
                          status=status)

        # Fallback
        try:
            return response.json()
        except ValueError:
            return {"status": status, "text": response.text}

    def _request(self, method: str, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Single HTTP request with proactive token refresh and 401 auto-refresh retry."""
        self._ensure_fresh_token()
        try:
            resp = requests.request(method, url, headers=self._auth_headers(), params=params,
                                    timeout=REQUEST_TIMEOUT)
        except requests.RequestException as ex:
            raise UpstreamFetchError(f"Graph request to {url} failed: {ex}")
        return self._handle_response(resp)

    def _retry(self, fn):
        # 4xx other than throttling will not get better by asking again
        return fncRetry(fn, no_retry=(NotFoundError, GraphClientError))

    # ---------- Public API ----------

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Perform a GET request to a Graph endpoint (single page).
        Use get_all for paginated resources.
        """
        url = f"{GRAPH_ROOT}/{endpoint.strip().lstrip('/')}"
        fncPrintMessage(f"GET {url}", "debug")
        return self._retry(lambda: self._request("GET", url, params=params))

    def get_all(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Retrieve all items from a paginated Graph endpoint.
        Returns a flat list of items (value) for list endpoints.
        Example: client.get_all("groups/{id}/members?$select=id,displayName")
        """
        url = f"{GRAPH_ROOT}/{endpoint.strip().lstrip('/')}"
        fncPrintMessage(f"GET (all pages) {url}", "debug")

        data = self._retry(lambda: self._request("GET", url, params=params))
        items: List[Dict[str, Any]] = []

        if isinstance(data, dict) and "value" not in data:
            return [data]

        if isinstance(data, dict) and "value" in data:
            items.extend(data.get("value", []))
            next_link = data.get("@odata.nextLink")
        else:
            return items

        while next_link:
            fncPrintMessage(f"Following nextLink -> {next_link}", "debug")
            link = next_link
            page = self._retry(lambda: self._request("GET", link))
            if isinstance(page, dict):
                items.extend(page.get("value", []))
                next_link = page.get("@odata.nextLink")
            else:
                break

        return items

    def validate_connection(self) -> bool:
        """True if the token works against the directory (used before a run)."""
        try:
            self.get("organization?$select=id")
            return True
        except UpstreamFetchError as ex:
            fncPrintMessage(f"Graph connection check failed: {ex}", "error")
            return False


class GraphClientError(UpstreamFetchError):
    """4xx from Graph (bad query, forbidden). Not retried."""


def _error_parts(response: requests.Response):
    try:
        body = response.json()
    except ValueError:
        body = {}
    err = (body.get("error") or {}) if isinstance(body, dict) else {}
    return str(err.get("code") or ""), str(err.get("message") or "")
