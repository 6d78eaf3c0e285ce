"""
Repository registry backed by Redis.

All state lives in Redis under a configurable namespace:
- {namespace}:repos        set of enrolled repository refs (backed up every cycle)
- {namespace}:known_repos  set of discovered repository refs
- {namespace}:lastrun      RFC3339 timestamp of the last completed cycle

Nothing is cached in-process; every call is one round trip to the store.
"""

import logging
from datetime import datetime, timezone
from typing import Final, Optional, Set
from urllib.parse import unquote, urlsplit

import redis

from ghbackup.config import DEFAULT_NAMESPACE


logger = logging.getLogger(__name__)

EPOCH: Final[datetime] = datetime(1970, 1, 1, tzinfo=timezone.utc)

LASTRUN: Final[str] = "lastrun"
ENROLLED: Final[str] = "repos"
KNOWN: Final[str] = "known_repos"

DEFAULT_REDIS_PORT: Final[int] = 6379


class RegistryError(Exception):
    """Raised when the registry cannot be reached or holds invalid data."""
    pass


def _decode(value) -> str:
    return value.decode("utf-8") if isinstance(value, (bytes, bytearray)) else str(value)


def _require_ref(ref: str) -> str:
    if not ref or not ref.strip():
        raise ValueError("Repository reference must not be empty")
    return ref


class Registry:
    def __init__(self, client: redis.Redis, namespace: str = DEFAULT_NAMESPACE) -> None:
        if not namespace:
            raise ValueError("Namespace must not be empty")
        self._client = client
        self.namespace = namespace

    def key(self, name: str) -> str:
        return f"{self.namespace}:{name}"

    # ---------------- Enrolled repositories ----------------

    def list_enrolled(self) -> Set[str]:
        return self._members(ENROLLED)

    def add_enrolled(self, ref: str) -> None:
        self._call("add enrolled repository", self._client.sadd, self.key(ENROLLED), _require_ref(ref))

    def remove_enrolled(self, ref: str) -> None:
        self._call("remove enrolled repository", self._client.srem, self.key(ENROLLED), _require_ref(ref))

    # ---------------- Known (discovered) repositories ----------------

    def list_known(self) -> Set[str]:
        return self._members(KNOWN)

    def add_known(self, ref: str) -> None:
        self._call("add known repository", self._client.sadd, self.key(KNOWN), _require_ref(ref))

    # ---------------- Last run ----------------

    def get_last_run(self) -> datetime:
        """
        Timestamp of the last completed cycle, the epoch if none was recorded.
        """
        raw = self._call("read last run", self._client.get, self.key(LASTRUN))
        if raw is None:
            return EPOCH

        value = _decode(raw)
        try:
            stamp = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise RegistryError(f"Invalid timestamp in {self.key(LASTRUN)}: {value!r}")

        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        return stamp

    def set_last_run(self, at: datetime) -> None:
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        value = at.astimezone(timezone.utc).isoformat(timespec="seconds")
        self._call("write last run", self._client.set, self.key(LASTRUN), value)

    # ---------------- Helpers ----------------

    def ping(self) -> bool:
        """Cheap existence check validating network and auth."""
        self._call("check registry", self._client.exists, self.key(LASTRUN))
        return True

    def close(self) -> None:
        self._client.close()

    def _members(self, name: str) -> Set[str]:
        members = self._call(f"list {name}", self._client.smembers, self.key(name))
        return {_decode(m) for m in (members or ())}

    @staticmethod
    def _call(action: str, fn, *args):
        try:
            return fn(*args)
        except redis.RedisError as e:
            raise RegistryError(f"Failed to {action}: {e}")


def connect_registry(url: str, namespace: str = DEFAULT_NAMESPACE, timeout: Optional[float] = None) -> Registry:
    """
    Connect to the registry store and verify it is usable.

    The URL has the form redis://[user[:pass]@]host[:port]. The password, or the
    user name when no password is given, is sent with AUTH on every pooled
    connection. A check command is issued so that network and auth problems
    surface here rather than on first use.

    Args:
        url: Redis locator
        namespace: Key namespace
        timeout: Socket timeout in seconds (None for no limit)

    Returns:
        Connected Registry

    Raises:
        RegistryError: If the URL is invalid or the store is unreachable
    """
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as e:
        raise RegistryError(f"Could not parse redis url: {e}")

    if parts.scheme != "redis":
        raise RegistryError(f"Unsupported redis scheme {parts.scheme or '(none)'}")
    if not parts.hostname:
        raise RegistryError(f"Missing host in redis url: {url}")

    password = None
    if parts.password:
        password = unquote(parts.password)
    elif parts.username:
        password = unquote(parts.username)

    pool = redis.ConnectionPool(
        host=parts.hostname,
        port=port or DEFAULT_REDIS_PORT,
        password=password,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
        socket_keepalive=True,
        health_check_interval=30,
        decode_responses=True,
    )
    registry = Registry(redis.Redis(connection_pool=pool), namespace)

    try:
        registry.ping()
    except RegistryError:
        pool.disconnect()
        raise

    logger.info(f"Connected to registry redis://{parts.hostname}:{port or DEFAULT_REDIS_PORT} (namespace {namespace})")
    return registry
