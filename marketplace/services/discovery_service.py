"""
Discovery engine for service listings and nearby users.

A query produces two views over the same filtered candidates:

* list view: keyword match OR radius filter, sorted by distance, paginated
* map view: viewport filter when a viewport is given, otherwise the same
  set as the list view; unpaginated but capped

A non-empty keyword always wins over geography: radius and area center are
ignored whenever one is present.
"""
import enum
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.lib.geo import BoundingBox, bounding_box, haversine_km
from marketplace.lib.logging import get_logger
from marketplace.lib.metrics import get_metrics_collector
from marketplace.lib.settings import settings
from marketplace.models.categories import Category, category_members
from marketplace.models.services import ServiceListing, ServiceType
from marketplace.models.users import User, UserStatus

logger = get_logger(__name__)


WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class DiscoveryMode(str, enum.Enum):
    """How the list view narrows candidates."""
    KEYWORD = "keyword"
    RADIUS = "radius"
    UNCONSTRAINED = "unconstrained"


class MapMode(str, enum.Enum):
    """How the map view narrows candidates."""
    VIEWPORT = "viewport"
    MIRROR = "mirror"


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


@dataclass
class DiscoveryQuery:
    """
    Typed search request.

    ``user_point`` is where the caller is (distance annotation);
    ``area_point`` is an alternate radius center such as a city.
    """
    category_ids: List[UUID] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    free_only: bool = False
    target_date: Optional[date] = None
    keyword: Optional[str] = None
    user_point: Optional[GeoPoint] = None
    area_point: Optional[GeoPoint] = None
    radius_km: Optional[float] = None
    viewport: Optional[BoundingBox] = None
    page: int = 1
    limit: int = 0

    def __post_init__(self):
        self.page = max(1, int(self.page or 1))
        limit = int(self.limit or settings.discovery_default_limit)
        self.limit = max(1, min(limit, settings.discovery_max_limit))

    @property
    def normalized_keyword(self) -> Optional[str]:
        if self.keyword is None:
            return None
        trimmed = self.keyword.strip()
        return trimmed or None

    @property
    def center(self) -> Optional[GeoPoint]:
        return self.area_point or self.user_point

    @property
    def mode(self) -> DiscoveryMode:
        if self.normalized_keyword:
            return DiscoveryMode.KEYWORD
        if self.center is not None and self.radius_km and self.radius_km > 0:
            return DiscoveryMode.RADIUS
        return DiscoveryMode.UNCONSTRAINED

    @property
    def map_mode(self) -> MapMode:
        return MapMode.VIEWPORT if self.viewport is not None else MapMode.MIRROR


@dataclass
class RankedItem:
    entity: Any
    distance_km: Optional[float]


@dataclass
class DiscoveryResult:
    total: int
    page: int
    limit: int
    mode: DiscoveryMode
    map_mode: MapMode
    list_results: List[RankedItem]
    map_results: List[RankedItem]


def keyword_pattern(keyword: str) -> "re.Pattern[str]":
    """Case-insensitive literal pattern; regex metacharacters are escaped."""
    return re.compile(re.escape(keyword), re.IGNORECASE)


def _matches_any(pattern: "re.Pattern[str]", values: Iterable[Any]) -> bool:
    for value in values:
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            if _matches_any(pattern, value):
                return True
        elif pattern.search(str(value)):
            return True
    return False


def _distance_sort_key(item: RankedItem) -> Tuple[int, float]:
    if item.distance_km is None:
        return (1, 0.0)
    return (0, item.distance_km)


def _rank(items: List[RankedItem]) -> List[RankedItem]:
    # sorted() is stable, so equal distances keep candidate order
    return sorted(items, key=_distance_sort_key)


def _listing_on_date(listing: ServiceListing, target: date) -> bool:
    if listing.service_type == ServiceType.ONE_TIME:
        return listing.date == target

    weekday = WEEKDAYS[target.weekday()]
    target_iso = target.isoformat()
    for slot in listing.recurring_slots or []:
        if not isinstance(slot, dict):
            continue
        if slot.get("date") and str(slot["date"])[:10] == target_iso:
            return True
        day = str(slot.get("day") or "").strip().lower()
        if day and (day == weekday or (len(day) >= 3 and weekday.startswith(day))):
            return True
    return False


def _tags_overlap(requested: Sequence[str], candidate: Iterable[str]) -> bool:
    wanted = {t.strip().lower() for t in requested if t and t.strip()}
    if not wanted:
        return True
    return any(str(t).strip().lower() in wanted for t in (candidate or []))


class DiscoveryService:
    """
    Search over listings and users.

    ``housekeeping`` is invoked once per search before candidates load
    (the stale-location sweep in production).
    """

    def __init__(self, db: Session, housekeeping: Optional[Callable[[], Any]] = None):
        self.db = db
        self.housekeeping = housekeeping
        self.metrics = get_metrics_collector()

    def _run_housekeeping(self) -> None:
        if self.housekeeping is None:
            return
        try:
            self.housekeeping()
        except Exception as e:
            logger.error(f"Search housekeeping failed: {e}", exc_info=True)

    def _assemble(
        self,
        query: DiscoveryQuery,
        candidates: List[Any],
        point_of: Callable[[Any], Optional[GeoPoint]],
        keyword_fields: Callable[[Any], Iterable[Any]],
        entity: str,
    ) -> DiscoveryResult:
        keyword = query.normalized_keyword
        if keyword:
            pattern = keyword_pattern(keyword)
            candidates = [c for c in candidates if _matches_any(pattern, keyword_fields(c))]

        def annotate(items: Iterable[Any]) -> List[RankedItem]:
            ranked = []
            for item in items:
                point = point_of(item)
                distance = None
                if query.user_point is not None and point is not None:
                    distance = haversine_km(
                        query.user_point.latitude, query.user_point.longitude,
                        point.latitude, point.longitude,
                    )
                ranked.append(RankedItem(entity=item, distance_km=distance))
            return ranked

        mode = query.mode
        if mode == DiscoveryMode.RADIUS:
            center = query.center
            list_candidates = []
            for item in candidates:
                point = point_of(item)
                if point is None:
                    continue
                if haversine_km(center.latitude, center.longitude, point.latitude, point.longitude) <= query.radius_km:
                    list_candidates.append(item)
        else:
            list_candidates = candidates

        ranked_list = _rank(annotate(list_candidates))

        if query.map_mode == MapMode.VIEWPORT:
            in_view = []
            for item in candidates:
                point = point_of(item)
                if point is not None and query.viewport.contains(point.latitude, point.longitude):
                    in_view.append(item)
            ranked_map = _rank(annotate(in_view))
        else:
            ranked_map = list(ranked_list)
        ranked_map = ranked_map[:settings.discovery_map_cap]

        skip = (query.page - 1) * query.limit
        page_items = ranked_list[skip:skip + query.limit]

        self.metrics.increment_searches(entity, mode.value)
        logger.info(
            "Discovery search complete",
            extra={
                "entity": entity,
                "mode": mode.value,
                "map_mode": query.map_mode.value,
                "total": len(ranked_list),
                "map_count": len(ranked_map),
            },
        )

        return DiscoveryResult(
            total=len(ranked_list),
            page=query.page,
            limit=query.limit,
            mode=mode,
            map_mode=query.map_mode,
            list_results=page_items,
            map_results=ranked_map,
        )

    # Services

    def _service_candidates(self, query: DiscoveryQuery) -> List[ServiceListing]:
        stmt = select(ServiceListing).where(ServiceListing.delete_approved.is_(False))
        if query.category_ids:
            stmt = stmt.where(ServiceListing.category_id.in_(query.category_ids))
        if query.free_only:
            stmt = stmt.where(ServiceListing.is_free.is_(True))

        # Coarse box prefilter; exact radius is applied afterwards
        if query.mode == DiscoveryMode.RADIUS and query.viewport is None:
            box = bounding_box(query.center.latitude, query.center.longitude, query.radius_km)
            if box.min_lon > -180.0 and box.max_lon < 180.0:
                stmt = stmt.where(
                    ServiceListing.latitude.between(box.min_lat, box.max_lat),
                    ServiceListing.longitude.between(box.min_lon, box.max_lon),
                )

        stmt = stmt.order_by(ServiceListing.created_at.desc())
        listings = list(self.db.execute(stmt).scalars().all())

        if query.tags:
            listings = [s for s in listings if _tags_overlap(query.tags, s.tags)]
        if query.target_date is not None:
            listings = [s for s in listings if _listing_on_date(s, query.target_date)]
        return listings

    def search_services(self, query: DiscoveryQuery) -> DiscoveryResult:
        self._run_housekeeping()

        listings = self._service_candidates(query)

        owner_ids = {s.owner_id for s in listings}
        category_ids = {s.category_id for s in listings}
        owners = {}
        categories = {}
        if owner_ids:
            owners = {u.id: u for u in self.db.execute(select(User).where(User.id.in_(owner_ids))).scalars()}
        if category_ids:
            categories = {
                c.id: c for c in self.db.execute(select(Category).where(Category.id.in_(category_ids))).scalars()
            }

        def keyword_fields(listing: ServiceListing):
            owner = owners.get(listing.owner_id)
            category = categories.get(listing.category_id)
            return (
                listing.title,
                listing.description,
                listing.tags,
                category.name if category else None,
                category.tags if category else None,
                listing.location_name,
                owner.name if owner else None,
                owner.email if owner else None,
            )

        return self._assemble(
            query,
            listings,
            point_of=lambda s: GeoPoint(s.latitude, s.longitude),
            keyword_fields=keyword_fields,
            entity="services",
        )

    # Users

    def search_users(self, query: DiscoveryQuery, requester_id: Optional[UUID] = None) -> DiscoveryResult:
        """
        Nearby-user search.

        Excludes the requester and inactive or banned accounts. Users without
        a fresh location never pass the radius filter and have no distance.
        """
        self._run_housekeeping()

        stmt = (
            select(User)
            .where(User.is_active.is_(True))
            .where(User.status.notin_([UserStatus.BANNED, UserStatus.INACTIVE]))
        )
        if requester_id is not None:
            stmt = stmt.where(User.id != requester_id)
        if query.category_ids:
            members = select(category_members.c.user_id).where(
                category_members.c.category_id.in_(query.category_ids)
            )
            stmt = stmt.where(User.id.in_(members))
        stmt = stmt.order_by(User.created_at.desc())

        users = list(self.db.execute(stmt).scalars().all())
        if query.tags:
            users = [u for u in users if _tags_overlap(query.tags, list(u.interests or []) + list(u.offered_tags or []))]

        def point_of(user: User) -> Optional[GeoPoint]:
            if not user.has_location:
                return None
            return GeoPoint(user.loc_latitude, user.loc_longitude)

        return self._assemble(
            query,
            users,
            point_of=point_of,
            keyword_fields=lambda u: (u.name, u.email, u.city, u.interests),
            entity="users",
        )
