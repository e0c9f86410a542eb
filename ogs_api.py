# ogs_api.py — fire-and-forget OGS REST calls (challenges, friend requests)
import asyncio
import json
from typing import Optional

import requests

API_PREFIX = "/api/v1/"


class ApiError(Exception):
    def __init__(self, msg: str, status: Optional[int] = None, body: str = ""):
        super().__init__(msg)
        self.status = status
        self.body = body


def api1(path: str) -> str:
    return API_PREFIX + path


def encode_body(data: dict):
    """JSON as soon as any value is structured, form-encoded otherwise."""
    if any(isinstance(v, (dict, list)) for v in data.values()):
        return json.dumps(data), "application/json"
    return data, "application/x-www-form-urlencoded"


class OgsApi:
    """
    Thin wrapper around requests. No retries: a failed call is reported to
    the caller as ApiError and that's it.
    """

    def __init__(self, host: str, port: int, insecure: bool = False, timeout: float = 10):
        scheme = "http" if insecure else "https"
        self.base = f"{scheme}://{host}:{port}"
        self.timeout = timeout
        self.http = requests.Session()

    def request(self, method: str, path: str, data: dict) -> str:
        data = dict(data or {})
        headers = data.pop("_headers", None) or {}
        body, ctype = encode_body(data)
        headers = {"Content-Type": ctype, **headers}
        try:
            r = self.http.request(method, self.base + path, data=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise ApiError(str(e)) from e
        if r.status_code < 200 or r.status_code > 299:
            raise ApiError(f"{r.status_code} - {r.text}", status=r.status_code, body=r.text)
        return r.text

    async def post(self, path: str, data: dict) -> str:
        return await asyncio.to_thread(self.request, "POST", path, data)

    async def delete(self, path: str, data: dict) -> str:
        return await asyncio.to_thread(self.request, "DELETE", path, data)

    async def accept_challenge(self, challenge_id, auth: dict) -> str:
        return await self.post(api1(f"me/challenges/{challenge_id}/accept"), auth)

    async def decline_challenge(self, challenge_id, auth: dict) -> str:
        return await self.delete(api1(f"me/challenges/{challenge_id}"), auth)

    async def accept_friend(self, user_id, auth: dict) -> str:
        return await self.post(api1("me/friends/invitations"), {**auth, "from_user": user_id})
