"""Cookie stores: in-memory and JSON-on-disk jars, plus the feed into rnet's jar."""

import email.utils
import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import urlparse

logger = logging.getLogger("clearance")


def extract_domain(url: str) -> str | None:
    """Extract hostname from a URL."""
    return urlparse(url).hostname


@dataclass
class Cookie:
    """A cookie as stored and replayed by the session.

    ``expires`` is a Unix timestamp in seconds, or None for a session
    cookie. An empty ``domain`` means host-only: the cookie belongs to
    the exact host of the URL it was saved under.
    """

    name: str
    value: str
    domain: str = ""
    path: str = "/"
    expires: float | None = None
    secure: bool = False
    http_only: bool = False

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires is None:
            return False
        return self.expires <= (time.time() if now is None else now)

    def to_set_cookie(self) -> str:
        """Render as a Set-Cookie header value for the HTTP client's jar.

        Host-only cookies carry no Domain attribute, so the jar scopes
        them to the URL they are added under.
        """
        parts = [f"{self.name}={self.value}"]
        if self.domain:
            parts.append(f"Domain={self.domain}")
        parts.append(f"Path={self.path or '/'}")
        if self.expires is not None:
            parts.append(
                f"Expires={email.utils.formatdate(self.expires, usegmt=True)}"
            )
        if self.secure:
            parts.append("Secure")
        if self.http_only:
            parts.append("HttpOnly")
        return "; ".join(parts)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Cookie":
        return cls(
            name=data["name"],
            value=data.get("value", ""),
            domain=data.get("domain", ""),
            path=data.get("path") or "/",
            expires=data.get("expires"),
            secure=bool(data.get("secure", False)),
            http_only=bool(data.get("http_only", False)),
        )


class CookieStore(Protocol):
    """Narrow store interface used by the session and the resolver."""

    def save(self, url: str, cookies: list[Cookie]) -> None: ...

    def load(self, url: str) -> list[Cookie]: ...


def _parse_cookie_expires(attrs: dict[str, str]) -> float | None:
    """Expiry timestamp from Set-Cookie attributes, None for session cookies."""
    # max-age takes precedence over expires
    if "max-age" in attrs:
        try:
            return time.time() + max(0, int(attrs["max-age"]))
        except ValueError:
            pass
    if "expires" in attrs:
        try:
            dt = email.utils.parsedate_to_datetime(attrs["expires"])
            return dt.timestamp()
        except (ValueError, TypeError):
            pass
    return None


def parse_set_cookie(raw: str) -> Cookie | None:
    """Parse one Set-Cookie header value. Returns None when malformed."""
    parts = raw.split(";")
    eq = parts[0].find("=")
    if eq <= 0:
        return None
    name = parts[0][:eq].strip()
    if not name:
        return None
    value = parts[0][eq + 1:].strip()
    attrs: dict[str, str] = {}
    for part in parts[1:]:
        key, _, val = part.partition("=")
        attrs[key.strip().lower()] = val.strip()
    return Cookie(
        name=name,
        value=value,
        domain=attrs.get("domain", ""),
        path=attrs.get("path") or "/",
        expires=_parse_cookie_expires(attrs),
        secure="secure" in attrs,
        http_only="httponly" in attrs,
    )


def parse_set_cookies(raw_values) -> list[Cookie]:
    """Parse Set-Cookie values (str or bytes), skipping malformed ones."""
    cookies = []
    for raw in raw_values:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        cookie = parse_set_cookie(str(raw))
        if cookie is not None:
            cookies.append(cookie)
    return cookies


def _host_key(url: str, cookie: Cookie) -> str:
    """Domain a cookie is filed under: its Domain, else the URL's host."""
    return (cookie.domain.lstrip(".") or extract_domain(url) or "").lower()


class CookieJar:
    """In-memory cookie store keyed by (host, path, name).

    This is storage, not request matching: replaying cookies on
    requests is left to the HTTP client's own jar. Thread-safe: the
    cookie store is the one resource shared by concurrent challenge
    resolutions.
    """

    def __init__(self):
        self._cookies: dict[tuple[str, str, str], Cookie] = {}
        self._lock = threading.Lock()

    def save(self, url: str, cookies: list[Cookie]) -> None:
        """Store cookies for a URL. Expired cookies delete their entry."""
        if not cookies:
            return
        now = time.time()
        with self._lock:
            for cookie in cookies:
                key = (_host_key(url, cookie), cookie.path or "/", cookie.name)
                if cookie.is_expired(now):
                    self._cookies.pop(key, None)
                else:
                    self._cookies[key] = cookie
        logger.debug("Saved %d cookies for %s", len(cookies), url)

    def load(self, url: str) -> list[Cookie]:
        """Return non-expired cookies filed under the URL's host.

        Longer paths sort first, as browsers send them.
        """
        host = (extract_domain(url) or "").lower()
        now = time.time()
        with self._lock:
            found = [
                c for key, c in self._cookies.items()
                if key[0] == host and not c.is_expired(now)
            ]
        found.sort(key=lambda c: len(c.path), reverse=True)
        return found

    def list_domains(self) -> list[str]:
        """List all hosts with stored cookies."""
        with self._lock:
            return sorted({key[0] for key in self._cookies})

    def clear(self, domain: str | None = None) -> None:
        """Forget all cookies, or only those of one domain."""
        with self._lock:
            if domain is None:
                self._cookies.clear()
                return
            domain = domain.lstrip(".").lower()
            for key in [k for k in self._cookies if k[0] == domain]:
                del self._cookies[key]

    def __len__(self) -> int:
        return len(self._cookies)


class FileCookieJar(CookieJar):
    """Cookie jar that persists to one JSON file per domain.

    Each domain gets a JSON file: {cache_dir}/{domain}.json
    Writes are atomic (temp file + rename) with per-domain threading
    locks to prevent lost-update races on concurrent save(). Session
    cookies are kept in memory only and never written to disk.
    Existing files are loaded on construction.
    """

    def __init__(self, cache_dir: str, max_entries: int = 50):
        super().__init__()
        self._cache_dir = Path(cache_dir)
        self._max_entries = max_entries
        self._domain_locks: dict[str, threading.Lock] = {}
        self._lock_lock = threading.Lock()
        self._hydrate()

    def _domain_path(self, domain: str) -> Path:
        safe = (
            domain.replace("/", "_")
            .replace("\\", "_")
            .replace(":", "_")
        )
        return self._cache_dir / f"{safe}.json"

    def _get_domain_lock(self, domain: str) -> threading.Lock:
        with self._lock_lock:
            if domain not in self._domain_locks:
                self._domain_locks[domain] = threading.Lock()
            return self._domain_locks[domain]

    def _load_raw(self, domain: str) -> list[dict]:
        """Load entries from disk without TTL filtering."""
        path = self._domain_path(domain)
        if not path.exists():
            return []
        try:
            with open(path) as f:
                data = json.load(f)
            if not isinstance(data, list):
                logger.warning(
                    "Corrupt cookie file for %s, ignoring", domain
                )
                return []
            return data
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(
                "Failed to load cookies for %s: %s", domain, e
            )
            return []

    def _hydrate(self) -> None:
        if not self._cache_dir.exists():
            return
        now = time.time()
        for path in self._cache_dir.glob("*.json"):
            restored = []
            for entry in self._load_raw(path.stem):
                try:
                    cookie = Cookie.from_dict(entry)
                except (KeyError, TypeError):
                    continue
                if cookie.expires is not None and cookie.expires > now:
                    restored.append(cookie)
            if restored:
                super().save(f"https://{path.stem}/", restored)
                logger.debug(
                    "Loaded %d cookies for %s", len(restored), path.stem
                )

    def save(self, url: str, cookies: list[Cookie]) -> None:
        """Save cookies with merge, TTL compaction, and LRU eviction."""
        if not cookies:
            return
        super().save(url, cookies)

        now = time.time()
        by_domain: dict[str, list[Cookie]] = {}
        for cookie in cookies:
            by_domain.setdefault(_host_key(url, cookie), []).append(cookie)

        for domain, fresh in by_domain.items():
            with self._get_domain_lock(domain):
                merged: dict[tuple[str, str], dict] = {}
                for entry in self._load_raw(domain):
                    if entry.get("name"):
                        merged[(entry.get("path") or "/", entry["name"])] = entry
                for cookie in fresh:
                    entry = cookie.to_dict()
                    entry["last_used"] = now
                    merged[(cookie.path, cookie.name)] = entry

                # TTL compaction - drop session cookies and expired
                entries = [
                    e for e in merged.values()
                    if e.get("expires") is not None and e["expires"] > now
                ]

                # LRU eviction
                if len(entries) > self._max_entries:
                    entries.sort(key=lambda e: e.get("last_used", 0))
                    evicted = len(entries) - self._max_entries
                    entries = entries[evicted:]
                    logger.warning(
                        "LRU evicted %d cookies for %s", evicted, domain
                    )

                if entries:
                    self._write_atomic(domain, entries)
                else:
                    self._domain_path(domain).unlink(missing_ok=True)

    def clear(self, domain: str | None = None) -> None:
        """Delete cached cookies for a domain (or all domains)."""
        super().clear(domain)
        if not self._cache_dir.exists():
            return
        paths = (
            list(self._cache_dir.glob("*.json"))
            if domain is None
            else [self._domain_path(domain.lstrip(".").lower())]
        )
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(
                    "Failed to clear cookies at %s: %s", path, e
                )

    def _write_atomic(self, domain: str, entries: list[dict]) -> None:
        """Atomic write: temp file + rename (same filesystem = atomic on POSIX)."""
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        path = self._domain_path(domain)
        fd, tmp_path = tempfile.mkstemp(
            dir=self._cache_dir, suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(entries, f, indent=2)
            os.replace(tmp_path, path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise


class ClientCookieStore:
    """CookieStore that feeds an rnet client's cookie jar.

    Cookies go into ``client.cookie_jar`` as Set-Cookie strings, so rnet
    does domain, path, secure and expiry matching when it replays them.
    They are also written through to ``backing`` when one is given, so
    they outlive the client.
    """

    def __init__(self, client, backing: CookieStore | None = None):
        self._client = client
        self.backing = backing

    def add_to_client(self, url: str, cookies: list[Cookie]) -> None:
        """Inject cookies into the client's jar only."""
        for cookie in cookies:
            try:
                self._client.cookie_jar.add(cookie.to_set_cookie(), url)
            except Exception as e:
                logger.debug(
                    "Failed to inject cookie %s: %s", cookie.name, e
                )

    def save(self, url: str, cookies: list[Cookie]) -> None:
        self.add_to_client(url, cookies)
        if self.backing is not None:
            self.backing.save(url, cookies)

    def load(self, url: str) -> list[Cookie]:
        if self.backing is None:
            return []
        return self.backing.load(url)
