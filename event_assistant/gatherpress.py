from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import json
import logging
import re

import requests

from .errors import (EventNotFound, EventSystemError, EventSystemTimeout,
                     EventSystemUnavailable, PermissionDenied)
from .models import Event, EventCreate, EventQuery, EventUpdate, Venue, VenueCreate
from .utils import event_within_range, format_iso_minute, parse_iso_date

logger = logging.getLogger(__name__)

REST_PREFIX = "/wp-json"
EVENTS_ROUTE = "/wp/v2/gatherpress_event"
VENUES_ROUTE = "/wp/v2/gatherpress_venue"
VENUE_TAXONOMY_ROUTE = "/wp/v2/_gatherpress_venue"
GATHERPRESS_NAMESPACE = "gatherpress/v1"
PER_PAGE = 100

_WP_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
_TAG_RE = re.compile(r"<[^>]*>")


def _rendered(value: Any) -> str:
    if isinstance(value, dict):
        value = value.get("raw") if value.get("raw") is not None else value.get("rendered")
    if not isinstance(value, str):
        return ""
    return _TAG_RE.sub("", value).strip()


def _to_wp_datetime(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return datetime.strptime(value, "%Y-%m-%dT%H:%M").strftime(_WP_DATETIME_FORMAT)


def _from_wp_datetime(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return format_iso_minute(datetime.strptime(value.strip(), _WP_DATETIME_FORMAT))
    except ValueError:
        return None


def _total_pages(resp: requests.Response) -> Optional[int]:
    try:
        return int(resp.headers.get("X-WP-TotalPages"))
    except (TypeError, ValueError):
        return None


class GatherPressClient:
    """GatherPress events and venues over the WordPress REST API.

    Authenticates with a WordPress application password; every call carries
    the configured timeout and HTTP failures map onto EventSystemError types.
    """

    def __init__(self,
                 base_url: str,
                 username: str = "",
                 app_password: str = "",
                 timeout: float = 15.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if username and app_password:
            self.session.auth = (username, app_password)

    # -------------------------
    # transport
    # -------------------------
    def _send(self,
              method: str,
              route: str,
              params: Optional[Dict[str, Any]] = None,
              payload: Optional[Dict[str, Any]] = None) -> Tuple[Any, requests.Response]:
        url = f"{self.base_url}{REST_PREFIX}{route}"
        try:
            resp = self.session.request(method,
                                        url,
                                        params=params,
                                        json=payload,
                                        timeout=self.timeout)
        except requests.Timeout as exc:
            raise EventSystemTimeout(
                f"{method} {route} timed out after {self.timeout:g}s") from exc
        except requests.RequestException as exc:
            raise EventSystemUnavailable(f"{method} {route} failed: {exc}") from exc

        try:
            data = resp.json()
        except ValueError:
            data = {"raw": resp.text}

        if resp.status_code >= 400:
            message = data.get("message") if isinstance(data, dict) else None
            message = message or f"{method} {route} returned HTTP {resp.status_code}"
            detail = {"status": resp.status_code, "route": route}
            if resp.status_code in (401, 403):
                raise PermissionDenied(message, detail, status_code=resp.status_code)
            if resp.status_code == 404:
                raise EventNotFound(message, detail, status_code=resp.status_code)
            raise EventSystemError(message, detail, status_code=resp.status_code)
        logger.debug("[GATHERPRESS] %s %s -> %s", method, route, resp.status_code)
        return data, resp

    def _request(self,
                 method: str,
                 route: str,
                 params: Optional[Dict[str, Any]] = None,
                 payload: Optional[Dict[str, Any]] = None) -> Any:
        return self._send(method, route, params=params, payload=payload)[0]

    def _get_all(self, route: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Every item of a paginated collection, following X-WP-TotalPages."""
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            data, resp = self._send("GET", route,
                                    params={**(params or {}), "per_page": PER_PAGE, "page": page})
            if not isinstance(data, list):
                break
            items.extend(data)
            total_pages = _total_pages(resp)
            if total_pages is not None:
                last_page = page >= total_pages
            else:
                last_page = len(data) < PER_PAGE
            if not data or last_page:
                break
            page += 1
        return items

    def missing_dependencies(self) -> List[str]:
        """Host components the site is missing; empty when GatherPress is reachable."""
        try:
            index = self._request("GET", "/")
        except EventSystemError as exc:
            logger.warning("WordPress REST API unreachable: %s", exc)
            return ["WordPress REST API"]
        namespaces = index.get("namespaces") if isinstance(index, dict) else None
        if not isinstance(namespaces, list) or GATHERPRESS_NAMESPACE not in namespaces:
            return ["GatherPress"]
        return []

    # -------------------------
    # mapping
    # -------------------------
    def _event_from_post(self, post: Dict[str, Any],
                         venues_by_term: Optional[Dict[int, Venue]] = None) -> Event:
        meta = post.get("meta") if isinstance(post.get("meta"), dict) else {}
        raw_datetime = meta.get("gatherpress_datetime")
        datetime_info: Dict[str, Any] = {}
        if isinstance(raw_datetime, str) and raw_datetime.strip():
            try:
                datetime_info = json.loads(raw_datetime)
            except ValueError:
                datetime_info = {}
        start = _from_wp_datetime(datetime_info.get("dateTimeStart")) or ""
        venue_terms = post.get("_gatherpress_venue") or []
        venue: Optional[Venue] = None
        if venues_by_term and venue_terms:
            venue = venues_by_term.get(int(venue_terms[0]))
        return Event(
            id=int(post["id"]),
            title=_rendered(post.get("title")),
            start=start,
            end=_from_wp_datetime(datetime_info.get("dateTimeEnd")),
            timezone=datetime_info.get("timezone") or "UTC",
            description=_rendered(post.get("content")) or None,
            venue_id=venue.id if venue else None,
            venue_name=venue.name if venue else None,
        )

    def _venue_from_post(self, post: Dict[str, Any]) -> Venue:
        meta = post.get("meta") if isinstance(post.get("meta"), dict) else {}
        info: Dict[str, Any] = {}
        raw_info = meta.get("gatherpress_venue_information")
        if isinstance(raw_info, str) and raw_info.strip():
            try:
                info = json.loads(raw_info)
            except ValueError:
                info = {}
        return Venue(
            id=int(post["id"]),
            name=_rendered(post.get("title")),
            address=info.get("fullAddress") or None,
            description=_rendered(post.get("content")) or None,
        )

    def _venue_term_id(self, venue_id: int) -> int:
        post = self._request("GET", f"{VENUES_ROUTE}/{venue_id}")
        slug = post.get("slug") if isinstance(post, dict) else None
        terms = self._request("GET", VENUE_TAXONOMY_ROUTE, params={"slug": f"_{slug}"})
        if not isinstance(terms, list) or not terms:
            raise EventNotFound(f"Venue {venue_id} has no GatherPress venue term.")
        return int(terms[0]["id"])

    def _venues_by_term(self) -> Dict[int, Venue]:
        venues = {f"_{p.get('slug')}": self._venue_from_post(p)
                  for p in self._list_venue_posts()}
        mapping: Dict[int, Venue] = {}
        for term in self._get_all(VENUE_TAXONOMY_ROUTE):
            venue = venues.get(term.get("slug"))
            if venue is not None:
                mapping[int(term["id"])] = venue
        return mapping

    def _datetime_meta(self, start: str, end: Optional[str], timezone: str) -> str:
        return json.dumps({
            "dateTimeStart": _to_wp_datetime(start),
            "dateTimeEnd": _to_wp_datetime(end or start),
            "timezone": timezone,
        })

    # -------------------------
    # EventSystem
    # -------------------------
    def create_event(self, payload: EventCreate) -> Event:
        body: Dict[str, Any] = {
            "title": payload.title,
            "status": "publish",
            "meta": {
                "gatherpress_datetime": self._datetime_meta(
                    payload.start, payload.end, payload.timezone),
            },
        }
        if payload.description:
            body["content"] = payload.description
        if payload.venue_id:
            body["_gatherpress_venue"] = [self._venue_term_id(payload.venue_id)]
        post = self._request("POST", EVENTS_ROUTE, payload=body)
        event = self._event_from_post(post)
        return event.model_copy(update={
            "start": event.start or payload.start,
            "end": event.end or payload.end,
            "venue_id": payload.venue_id,
            "rrule": payload.rrule,
        })

    def update_event(self, event_id: int, patch: EventUpdate) -> Event:
        current = self._event_from_post(
            self._request("GET", f"{EVENTS_ROUTE}/{event_id}", params={"context": "edit"}))
        body: Dict[str, Any] = {}
        if patch.title is not None:
            body["title"] = patch.title
        if patch.description is not None:
            body["content"] = patch.description
        if patch.start is not None or patch.end is not None:
            body["meta"] = {
                "gatherpress_datetime": self._datetime_meta(
                    patch.start or current.start,
                    patch.end or current.end,
                    current.timezone),
            }
        if patch.venue_id is not None:
            body["_gatherpress_venue"] = [self._venue_term_id(patch.venue_id)]
        post = self._request("POST", f"{EVENTS_ROUTE}/{event_id}", payload=body)
        return self._event_from_post(post)

    def list_events(self, query: EventQuery) -> List[Event]:
        params: Dict[str, Any] = {"context": "edit"}
        if query.title_contains:
            params["search"] = query.title_contains
        posts = self._get_all(EVENTS_ROUTE, params)
        venues_by_term = self._venues_by_term()
        range_start = parse_iso_date(query.start_date)
        range_end = parse_iso_date(query.end_date)
        events: List[Event] = []
        for post in posts:
            event = self._event_from_post(post, venues_by_term)
            if query.title_contains and query.title_contains.lower() not in event.title.lower():
                continue
            if query.venue_name and query.venue_name.lower() not in (event.venue_name or "").lower():
                continue
            if (range_start or range_end) and not event_within_range(
                    event.start, range_start, range_end):
                continue
            events.append(event)
        events.sort(key=lambda e: (e.start, e.id))
        return events if query.limit is None else events[:query.limit]

    def create_venue(self, payload: VenueCreate) -> Venue:
        body: Dict[str, Any] = {"title": payload.name, "status": "publish"}
        if payload.description:
            body["content"] = payload.description
        if payload.address:
            body["meta"] = {
                "gatherpress_venue_information": json.dumps({"fullAddress": payload.address}),
            }
        return self._venue_from_post(self._request("POST", VENUES_ROUTE, payload=body))

    def _list_venue_posts(self, search: Optional[str] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"context": "edit"}
        if search:
            params["search"] = search
        return self._get_all(VENUES_ROUTE, params)

    def list_venues(self, name_contains: Optional[str] = None) -> List[Venue]:
        venues = [self._venue_from_post(p) for p in self._list_venue_posts(name_contains)]
        if name_contains:
            wanted = name_contains.strip().lower()
            venues = [v for v in venues if wanted in v.name.lower()]
        return venues
