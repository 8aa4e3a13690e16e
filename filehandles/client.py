from __future__ import annotations

from typing import Any, Optional

import httpx

from .auth import sign_challenge


def _extract_error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text if text else response.reason_phrase
    if isinstance(body, dict):
        detail = body.get("detail")
        if detail is None:
            return str(body)
        return str(detail)
    return str(body)


def _raise_for_status(response: httpx.Response) -> None:
    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        request = exc.request
        method = request.method if request else "REQUEST"
        url = request.url.path if request else str(response.url)
        detail = _extract_error_detail(response)
        raise RuntimeError(f"{method} {url} -> {response.status_code}: {detail}") from exc


class HandleConsoleClient:
    """
    Client for the Open File Handles console (`filehandles/api_server.py`).

    Activation blocks until the attach helper exits, so the default timeout
    is generous.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        timeout_s: float = 120.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout_s)
        self._owns_client = client is None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HandleConsoleClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def health_check(self) -> dict[str, Any]:
        r = self._client.get("/health")
        _raise_for_status(r)
        return r.json()

    # --- Auth ---
    def register(self, name: str, public_key_hex: str) -> dict[str, Any]:
        r = self._client.post("/auth/register", json={"name": name, "public_key_hex": public_key_hex})
        _raise_for_status(r)
        return r.json()

    def login(self, address: str, private_key_hex: bytes) -> dict[str, Any]:
        """Challenge-response login. Stores the issued token on the client."""
        r = self._client.post("/auth/challenge", json={"address": address})
        _raise_for_status(r)
        challenge = bytes.fromhex(r.json()["challenge"])
        signature = sign_challenge(private_key_hex, challenge)

        r = self._client.post(
            "/auth/verify",
            json={"address": address, "signature_hex": signature.decode()},
        )
        _raise_for_status(r)
        data = r.json()
        self.token = data["token"]
        return data

    # --- Console ---
    def management_links(self) -> list[dict[str, Any]]:
        r = self._client.get("/manage")
        _raise_for_status(r)
        return r.json()

    def status(self) -> dict[str, Any]:
        r = self._client.get("/file-handles/status", headers=self._headers())
        _raise_for_status(r)
        return r.json()

    def report(self) -> Optional[str]:
        """The open-handle dump, or None when the agent has not been activated."""
        r = self._client.get("/file-handles", headers={**self._headers(), "Accept": "text/plain"})
        _raise_for_status(r)
        if r.headers.get("content-type", "").startswith("text/html"):
            return None
        return r.text

    def activate(self, opts: Optional[str] = None) -> str:
        params = {"opts": opts} if opts is not None else None
        r = self._client.post("/file-handles/activate", headers=self._headers(), params=params)
        _raise_for_status(r)
        return r.text
