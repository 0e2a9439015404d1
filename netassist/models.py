"""In-memory stores for sample game objects and user accounts."""

from __future__ import annotations

import copy
import threading
import time
from dataclasses import dataclass, field


class NotFoundError(LookupError):
    """Raised when a requested record does not exist."""


@dataclass
class GameObject:
    """A scored object owned by a player."""

    object_id: str = ""
    score: int = 0
    player_name: str = ""


@dataclass
class Profile:
    """Personal details attached to a user."""

    gender: str = ""
    age: int = 0
    address: str = ""
    email: str = ""


@dataclass
class User:
    """A user account."""

    id: str = ""
    username: str = ""
    password: str = ""
    profile: Profile = field(default_factory=Profile)


class _IdClock:
    """Nanosecond timestamps that never repeat within the process."""

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            stamp = max(time.time_ns(), self._last + 1)
            self._last = stamp
            return stamp


_clock = _IdClock()


def _seed_objects() -> dict[str, GameObject]:
    return {
        "hjkhsbnmn123": GameObject("hjkhsbnmn123", 100, "astaxie"),
        "mjjkxsxsaa23": GameObject("mjjkxsxsaa23", 101, "someone"),
    }


def _seed_users() -> dict[str, User]:
    password = "password"
    user = User(
        id="user_11111",
        username="astaxie",
        password=password,
        profile=Profile("male", 20, "Singapore", "astaxie@example.com"),
    )
    return {user.id: user}


class ObjectStore:
    """Thread-safe collection of game objects keyed by object id."""

    def __init__(self, seed: bool = True) -> None:
        self._lock = threading.Lock()
        self._objects: dict[str, GameObject] = _seed_objects() if seed else {}

    def add(self, obj: GameObject) -> str:
        """Store a copy of ``obj`` under a fresh id and return that id."""
        stored = copy.deepcopy(obj)
        stored.object_id = f"astaxie{_clock.next()}"
        with self._lock:
            self._objects[stored.object_id] = stored
        return stored.object_id

    def get(self, object_id: str) -> GameObject:
        with self._lock:
            try:
                return self._objects[object_id]
            except KeyError:
                raise NotFoundError("ObjectId Not Exist") from None

    def all(self) -> dict[str, GameObject]:
        with self._lock:
            return dict(self._objects)

    def update(self, object_id: str, score: int) -> None:
        self.get(object_id).score = score

    def delete(self, object_id: str) -> None:
        with self._lock:
            self._objects.pop(object_id, None)


class UserStore:
    """Thread-safe collection of users keyed by user id."""

    def __init__(self, seed: bool = True) -> None:
        self._lock = threading.Lock()
        self._users: dict[str, User] = _seed_users() if seed else {}

    def add(self, user: User) -> str:
        """Store a copy of ``user`` under a fresh id and return that id."""
        stored = copy.deepcopy(user)
        stored.id = f"user_{_clock.next()}"
        with self._lock:
            self._users[stored.id] = stored
        return stored.id

    def get(self, uid: str) -> User:
        with self._lock:
            try:
                return self._users[uid]
            except KeyError:
                raise NotFoundError("User not exists") from None

    def all(self) -> dict[str, User]:
        with self._lock:
            return dict(self._users)

    def update(self, uid: str, changes: User) -> User:
        """Copy every non-empty field of ``changes`` onto the stored user."""
        with self._lock:
            user = self._users.get(uid)
            if user is None:
                raise NotFoundError("User Not Exist")
            if changes.username:
                user.username = changes.username
            if changes.password:
                user.password = changes.password
            new_profile = changes.profile
            if new_profile.age != 0:
                user.profile.age = new_profile.age
            if new_profile.address:
                user.profile.address = new_profile.address
            if new_profile.gender:
                user.profile.gender = new_profile.gender
            if new_profile.email:
                user.profile.email = new_profile.email
            return user

    def login(self, username: str, password: str) -> bool:
        with self._lock:
            return any(
                u.username == username and u.password == password
                for u in self._users.values()
            )

    def delete(self, uid: str) -> None:
        with self._lock:
            self._users.pop(uid, None)