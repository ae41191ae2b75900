import random
import re
from collections.abc import Iterable
from typing import Union

from .env import load_keys_from_env
from .errors import MissingCredentials

_SEPARATORS = re.compile(r"[\n,]+")


def parse_keys(raw: Union[str, None]) -> tuple[str, ...]:
    """Split a user-entered key string into unique keys.

    One key per line or comma; whitespace is trimmed, blanks and repeats are
    dropped. None or separator-only input gives an empty tuple.
    """
    if not raw:
        return ()
    seen: dict[str, None] = {}
    for part in _SEPARATORS.split(raw):
        key = part.strip()
        if key:
            seen.setdefault(key, None)
    return tuple(seen)


class KeyPool:
    """An immutable set of candidate API keys for one logical request.

    Pools are cheap value objects: ``exclude`` hands back a smaller pool and
    leaves the original (and whatever persistent store it came from) alone.
    """

    __slots__ = ("_keys",)

    def __init__(self, keys: Iterable[str] = ()):
        # keep first occurrence, drop blanks
        self._keys: tuple[str, ...] = tuple(dict.fromkeys(k for k in keys if k))

    # ---------- construction ----------

    @classmethod
    def from_string(cls, raw: Union[str, None]) -> "KeyPool":
        return cls(parse_keys(raw))

    @classmethod
    def coerce(cls, keys: Union["KeyPool", str, Iterable[str], None]) -> "KeyPool":
        """Turn None | str | iterable of str | KeyPool into a KeyPool.

        Strings are parsed; iterable members are parsed too, so a list of
        multi-line env values works.
        """
        if keys is None:
            return cls()
        if isinstance(keys, KeyPool):
            return keys
        if isinstance(keys, str):
            return cls.from_string(keys)
        parsed: list[str] = []
        for item in keys:
            parsed.extend(parse_keys(item))
        return cls(parsed)

    @classmethod
    def from_env(
        cls,
        names: Union[Iterable[str], None] = None,
        prefix: Union[str, None] = None,
        env_path: Union[str, None] = None,
    ) -> "KeyPool":
        """Build a pool from environment variables (see load_keys_from_env)."""
        return cls.coerce(load_keys_from_env(names=names, prefix=prefix, env_path=env_path))

    # ---------- selection ----------

    @property
    def keys(self) -> tuple[str, ...]:
        return self._keys

    def select_random(self, rng: Union[random.Random, None] = None) -> str:
        if not self._keys:
            raise MissingCredentials()
        rng = rng or random
        return self._keys[rng.randrange(len(self._keys))]

    def exclude(self, key: str) -> "KeyPool":
        return KeyPool(k for k in self._keys if k != key)

    # ---------- container protocol ----------

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self):
        return iter(self._keys)

    def __contains__(self, key) -> bool:
        return key in self._keys

    def __bool__(self) -> bool:
        return bool(self._keys)

    def __eq__(self, other) -> bool:
        if not isinstance(other, KeyPool):
            return NotImplemented
        return self._keys == other._keys

    def __hash__(self) -> int:
        return hash(self._keys)

    def __repr__(self) -> str:
        return f"KeyPool(size={len(self._keys)})"
