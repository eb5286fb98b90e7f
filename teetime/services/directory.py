from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from teetime.models import Club, ClubLocation
from teetime.services.ttl_cache import TTLCache


@dataclass(frozen=True)
class VenueOption:
    id: str
    name: str


class VenueDirectory:
    """Active clubs and locations, optionally memoized in an injected cache."""

    def __init__(self, db: Session, cache: Optional[TTLCache] = None):
        self.db = db
        self.cache = cache

    def _cached(self, key, loader):
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
        value = loader()
        if self.cache is not None:
            self.cache.set(key, value)
        return value

    def active_clubs(self) -> list[VenueOption]:
        def load():
            rows = self.db.query(Club).filter(Club.is_active.is_(True)).order_by(Club.name).all()
            return [VenueOption(id=str(row.id), name=row.name) for row in rows]

        return self._cached(("clubs",), load)

    def active_locations(self, club_id: str) -> list[VenueOption]:
        def load():
            rows = (
                self.db.query(ClubLocation)
                .filter(ClubLocation.club_id == club_id, ClubLocation.is_active.is_(True))
                .order_by(ClubLocation.name)
                .all()
            )
            return [VenueOption(id=str(row.id), name=row.name) for row in rows]

        return self._cached(("locations", str(club_id)), load)
