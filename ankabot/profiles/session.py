"""
Named session profiles: emulation settings plus a cookie jar that
accumulates across runs of the same profile name.

Cookies are keyed by (domain, path, name); merging the same records twice
leaves the jar unchanged. At most one fetch should use a given profile name
at a time; concurrent processes saving the same name are last-writer-wins.
"""

import json
import logging
import sqlite3
import time
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from pydantic import ValidationError

from ankabot.errors import OutputWriteError, ProfileError
from ankabot.fetch.base import BrowserSession
from ankabot.profiles import db as profile_db
from ankabot.schemas import Cookie, GeoPoint, SessionProfile

logger = logging.getLogger(__name__)


def _read_cookie_records(path: str) -> List[Dict[str, Any]]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except OSError as e:
        raise ProfileError(f"Cannot read cookie file {path}: {e}")
    except json.JSONDecodeError as e:
        raise ProfileError(f"Cookie file {path} is not valid JSON: {e}")

    # Playwright storage_state files wrap the list in {"cookies": [...]}
    if isinstance(data, dict):
        data = data.get("cookies", [])
    if not isinstance(data, list):
        raise ProfileError(f"Cookie file {path} must contain a list of cookies")
    return data


class ProfileManager:
    def __init__(self, profile: SessionProfile) -> None:
        self.profile = profile
        self._injected: Set[Tuple[str, str, str]] = set()

    @property
    def name(self) -> str:
        return self.profile.name

    @classmethod
    def load(cls, name: str) -> "ProfileManager":
        """Stored profile for name, or a fresh empty one. Never fails on a missing profile."""
        try:
            profile_db.init_db()
            payload = profile_db.get(name)
        except (sqlite3.Error, OSError) as e:
            raise ProfileError(f"Cannot read profile {name!r} from {profile_db.DATABASE_PATH}: {e}")
        if payload is None:
            logger.info("profile %r not found, starting fresh", name)
            return cls(SessionProfile(name=name))
        try:
            profile = SessionProfile.model_validate_json(payload)
        except ValidationError as e:
            logger.warning("profile %r is corrupted (%s), starting fresh", name, e.error_count())
            return cls(SessionProfile(name=name))
        logger.info("profile %r loaded (%d cookies)", name, len(profile.cookies))
        return cls(profile)

    def save(self, name: Optional[str] = None) -> None:
        if name and name != self.profile.name:
            self.profile = self.profile.model_copy(update={"name": name})
        try:
            profile_db.init_db()
            profile_db.set(self.profile.name, self.profile.model_dump_json())
        except (sqlite3.Error, OSError) as e:
            raise ProfileError(f"Cannot save profile {self.profile.name!r} to {profile_db.DATABASE_PATH}: {e}")
        logger.info("profile %r saved (%d cookies)", self.profile.name, len(self.profile.cookies))

    def with_overrides(
        self,
        locale: Optional[str] = None,
        timezone: Optional[str] = None,
        geo: Optional[GeoPoint] = None,
    ) -> SessionProfile:
        """
        Copy of the profile with this run's emulation overrides.
        The stored profile is left alone; overrides are never saved.
        """
        update = {}
        if locale:
            update["locale"] = locale
        if timezone:
            update["timezone"] = timezone
        if geo is not None:
            update["geo"] = geo
        return self.profile.model_copy(update=update)

    def merge_cookies(self, cookies: Iterable[Cookie]) -> int:
        jar = {cookie.key: cookie for cookie in self.profile.cookies}
        merged = 0
        for cookie in cookies:
            jar[cookie.key] = cookie
            merged += 1
        self.profile.cookies = list(jar.values())
        return merged

    def import_cookies(self, path: str) -> int:
        records = _read_cookie_records(path)
        try:
            cookies = [Cookie.model_validate(record) for record in records]
        except ValidationError as e:
            raise ProfileError(f"Cookie file {path} has invalid records: {e}")
        count = self.merge_cookies(cookies)
        logger.info("imported %d cookies from %s into %r", count, path, self.name)
        return count

    def export_cookies(self, path: str) -> int:
        payload = {"cookies": [cookie.to_playwright() for cookie in self.profile.cookies]}
        try:
            with open(path, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2, ensure_ascii=False)
        except OSError as e:
            raise OutputWriteError(f"Cannot write cookies to {path}: {e}", path)
        logger.info("exported %d cookies to %s", len(payload["cookies"]), path)
        return len(payload["cookies"])

    def sync_from_browser(self, raw_cookies: List[Dict[str, Any]], now: Optional[float] = None) -> int:
        """
        Bring the jar in line with the browser context after navigation.

        The browser is authoritative for every cookie it was given: one the
        site deleted or expired is gone from the context and is dropped here.
        Expired entries are pruned too. Cookies the browser reports are merged.
        """
        now = time.time() if now is None else now
        cookies = []
        for record in raw_cookies:
            try:
                cookies.append(Cookie.model_validate(record))
            except ValidationError as e:
                logger.debug("skipping unreadable browser cookie %r: %s", record.get("name"), e)

        present = {cookie.key for cookie in cookies}
        kept = [
            cookie for cookie in self.profile.cookies
            if not cookie.is_expired(now) and (cookie.key in present or cookie.key not in self._injected)
        ]
        dropped = len(self.profile.cookies) - len(kept)
        if dropped:
            logger.info("dropping %d cookies deleted or expired since the last run", dropped)
        self.profile.cookies = kept
        return self.merge_cookies(cookie for cookie in cookies if not cookie.is_expired(now))

    def live_cookies(self, now: Optional[float] = None) -> List[Cookie]:
        now = time.time() if now is None else now
        return [cookie for cookie in self.profile.cookies if not cookie.is_expired(now)]

    async def apply_to(
        self,
        session: BrowserSession,
        now: Optional[float] = None,
        profile: Optional[SessionProfile] = None,
    ) -> int:
        """
        Set locale/timezone/geolocation emulation and inject cookies.
        Must run before navigation. Expired cookies are never injected.
        Emulation comes from profile when given (a per-run copy from
        with_overrides), cookies always come from the jar.
        Returns the number of cookies injected.
        """
        profile = profile or self.profile
        geolocation = None
        if profile.geo is not None:
            geolocation = {"latitude": profile.geo.latitude, "longitude": profile.geo.longitude}
        await session.set_emulation(locale=profile.locale, timezone=profile.timezone, geolocation=geolocation)

        live = self.live_cookies(now)
        skipped = len(self.profile.cookies) - len(live)
        if skipped:
            logger.info("skipping %d expired cookies", skipped)
        await session.add_cookies([cookie.to_playwright() for cookie in live])
        self._injected = {cookie.key for cookie in live}
        return len(live)
