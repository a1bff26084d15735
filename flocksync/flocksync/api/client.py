"""Async REST client for the Flock API.

Every call returns the decoded JSON body. Non-2xx responses raise
:class:`~flocksync.exceptions.ApiError` carrying the server's ``error`` text
(or the first validation message), HTTP 429 raises
:class:`~flocksync.exceptions.RateLimitedError` and transport failures are
wrapped as ``ApiError`` without a status.
"""

from __future__ import annotations

import logging
from typing import Any, Dict
from urllib.parse import quote

import aiohttp

from ..exceptions import ApiError, RateLimitedError, ValidationError
from .cache import SEARCH_TTL_SECONDS, TTLCache

logger = logging.getLogger(__name__)

DEFAULT_ERROR = "Something went wrong"


def _error_message(data: Any) -> str:
    if isinstance(data, dict):
        if data.get("error"):
            return str(data["error"])
        errors = data.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            msg = errors[0].get("msg")
            if msg:
                return str(msg)
    return DEFAULT_ERROR


class ApiClient:
    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        session: aiohttp.ClientSession | None = None,
        timeout: float = 15.0,
        search_ttl: float = SEARCH_TTL_SECONDS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._search_cache = TTLCache(search_ttl)
        self._venue_summaries: Dict[str, dict] = {}

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def request(
        self,
        method: str,
        endpoint: str,
        json: dict | None = None,
        params: dict | None = None,
    ) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        url = f"{self.base_url}{endpoint}"
        session = self._get_session()
        try:
            async with session.request(
                method, url, json=json, params=params, headers=headers
            ) as resp:
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    data = None
                if resp.status == 429:
                    logger.warning("%s %s rate limited", method, endpoint)
                    raise RateLimitedError(_error_message(data), resp.status)
                if resp.status >= 400:
                    logger.info("%s %s failed: HTTP %s", method, endpoint, resp.status)
                    raise ApiError(_error_message(data), resp.status)
        except aiohttp.ClientError as exc:
            logger.warning("%s %s network error: %s", method, endpoint, exc)
            raise ApiError(f"Network error: {exc}") from exc
        return data if isinstance(data, dict) else {}

    # ---- auth ----

    async def signup(self, name: str, email: str, password: str) -> dict:
        data = await self.request(
            "POST",
            "/api/auth/signup",
            json={"name": name, "email": email, "password": password},
        )
        self.token = data.get("token")
        return data

    async def login(self, email: str, password: str) -> dict:
        data = await self.request(
            "POST", "/api/auth/login", json={"email": email, "password": password}
        )
        self.token = data.get("token")
        return data

    async def me(self) -> dict:
        return await self.request("GET", "/api/auth/me")

    async def logout(self) -> None:
        try:
            await self.request("POST", "/api/auth/logout")
        finally:
            self.token = None

    # ---- flocks ----

    async def list_flocks(self) -> dict:
        return await self.request("GET", "/api/flocks")

    async def get_flock(self, flock_id) -> dict:
        return await self.request("GET", f"/api/flocks/{flock_id}")

    async def create_flock(self, **fields) -> dict:
        return await self.request("POST", "/api/flocks", json=fields)

    async def update_flock(self, flock_id, **fields) -> dict:
        return await self.request("PUT", f"/api/flocks/{flock_id}", json=fields)

    async def delete_flock(self, flock_id) -> dict:
        return await self.request("DELETE", f"/api/flocks/{flock_id}")

    async def join_flock(self, flock_id) -> dict:
        return await self.request("POST", f"/api/flocks/{flock_id}/join")

    async def leave_flock(self, flock_id) -> dict:
        return await self.request("POST", f"/api/flocks/{flock_id}/leave")

    async def flock_members(self, flock_id) -> dict:
        return await self.request("GET", f"/api/flocks/{flock_id}/members")

    # ---- messages ----

    async def flock_messages(self, flock_id, limit: int = 50, before=None) -> dict:
        params: Dict[str, Any] = {"limit": limit}
        if before is not None:
            params["before"] = before
        return await self.request("GET", f"/api/flocks/{flock_id}/messages", params=params)

    async def post_flock_message(self, flock_id, message: dict) -> dict:
        return await self.request("POST", f"/api/flocks/{flock_id}/messages", json=message)

    async def react(self, message_id, emoji: str) -> dict:
        return await self.request(
            "POST", f"/api/messages/{message_id}/react", json={"emoji": emoji}
        )

    async def unreact(self, message_id, emoji: str) -> dict:
        return await self.request(
            "DELETE", f"/api/messages/{message_id}/react/{quote(emoji, safe='')}"
        )

    async def dm_messages(self, user_id, limit: int = 50, before=None) -> dict:
        params: Dict[str, Any] = {"limit": limit}
        if before is not None:
            params["before"] = before
        return await self.request("GET", f"/api/dm/{user_id}", params=params)

    async def post_dm(self, user_id, message: dict) -> dict:
        return await self.request("POST", f"/api/dm/{user_id}", json=message)

    async def mark_dm_read(self, message_id) -> dict:
        return await self.request("PUT", f"/api/dm/{message_id}/read")

    # ---- friends ----

    async def send_friend_request(self, user_id) -> dict:
        return await self.request("POST", "/api/friends/request", json={"user_id": user_id})

    async def accept_friend_request(self, user_id) -> dict:
        return await self.request("POST", "/api/friends/accept", json={"user_id": user_id})

    async def list_friends(self) -> dict:
        return await self.request("GET", "/api/friends")

    async def pending_friend_requests(self) -> dict:
        return await self.request("GET", "/api/friends/pending")

    async def friend_status(self, user_id) -> dict:
        return await self.request("GET", f"/api/friends/status/{user_id}")

    # ---- users ----

    async def profile(self) -> dict:
        return await self.request("GET", "/api/users/profile")

    async def update_profile(self, **fields) -> dict:
        return await self.request("PUT", "/api/users/profile", json=fields)

    async def search_users(self, query: str) -> dict:
        query = query.strip()
        if not query:
            raise ValidationError("Search query is required")
        return await self.request("GET", "/api/users/search", params={"q": query})

    async def suggested_users(self) -> dict:
        return await self.request("GET", "/api/users/suggested")

    # ---- safety ----

    async def trusted_contacts(self) -> dict:
        return await self.request("GET", "/api/safety/contacts")

    async def add_trusted_contact(
        self,
        name: str,
        phone: str,
        email: str | None = None,
        relationship: str | None = None,
    ) -> dict:
        if not (name or "").strip() or not (phone or "").strip():
            raise ValidationError("Name and phone are required")
        body: Dict[str, Any] = {"name": name.strip(), "phone": phone.strip()}
        if email:
            body["email"] = email
        if relationship:
            body["relationship"] = relationship
        return await self.request("POST", "/api/safety/contacts", json=body)

    async def remove_trusted_contact(self, contact_id) -> dict:
        return await self.request("DELETE", f"/api/safety/contacts/{contact_id}")

    async def send_alert(
        self,
        latitude: float | None = None,
        longitude: float | None = None,
        include_location: bool = False,
    ) -> dict:
        body = {
            "latitude": latitude,
            "longitude": longitude,
            "includeLocation": include_location and latitude is not None,
        }
        return await self.request("POST", "/api/safety/alert", json=body)

    async def share_location_with_contacts(self, latitude: float, longitude: float) -> dict:
        return await self.request(
            "POST",
            "/api/safety/share-location",
            json={"latitude": latitude, "longitude": longitude},
        )

    # ---- venues ----

    async def search_venues(self, query: str, location: str | None = None) -> dict:
        key = f"{query}|{location or ''}"
        cached = self._search_cache.get(key)
        if cached is not None:
            logger.debug("Venue search cache hit %s", key)
            return cached
        params = {"query": query}
        if location:
            params["location"] = location
        data = await self.request("GET", "/api/venues/search", params=params)
        for venue in data.get("venues", []):
            place_id = venue.get("place_id")
            if place_id:
                self._venue_summaries[str(place_id)] = venue
        self._search_cache.set(key, data)
        return data

    async def venue_details(self, place_id: str) -> dict:
        """Fetch venue details, falling back to the last search summary."""
        try:
            return await self.request(
                "GET", "/api/venues/details", params={"place_id": place_id}
            )
        except ApiError as exc:
            summary = self._venue_summaries.get(str(place_id))
            if summary is None:
                raise
            logger.info("Venue details failed for %s, using summary: %s", place_id, exc)
            return {"venue": summary, "partial": True}

    async def vote(self, flock_id, venue_name: str, venue_id: str | None = None) -> dict:
        body: Dict[str, Any] = {"venue_name": venue_name}
        if venue_id:
            body["venue_id"] = venue_id
        return await self.request("POST", f"/api/flocks/{flock_id}/vote", json=body)

    async def votes(self, flock_id) -> dict:
        return await self.request("GET", f"/api/flocks/{flock_id}/votes")
