from __future__ import annotations

META_SUFFIX = ":meta"
TAGS_SUFFIX = ":tags"
TAG_PREFIX = "tag:"


def meta_key(key: str) -> str:
    return f"{key}{META_SUFFIX}"


def tags_key(key: str) -> str:
    return f"{key}{TAGS_SUFFIX}"


def tag_index_key(tag: str) -> str:
    return f"{TAG_PREFIX}{tag}"


def entry_record_keys(key: str) -> tuple[str, str, str]:
    """Value, metadata and tag-list record names for one cache entry."""
    return key, meta_key(key), tags_key(key)


def is_auxiliary_key(key: str) -> bool:
    return key.endswith(META_SUFFIX) or key.endswith(TAGS_SUFFIX) or key.startswith(TAG_PREFIX)


class CacheKeys:
    """Key builders shared by cache callers.

    The cache never enforces these; they only keep namespacing consistent
    between the code that fills an entry and the code that invalidates it.
    """

    @staticmethod
    def user(user_id: str) -> str:
        return f"user:{user_id}"

    @staticmethod
    def post(post_id: str) -> str:
        return f"post:{post_id}"

    @staticmethod
    def posts(community_id: str, page: int) -> str:
        return f"posts:{community_id}:{page}"

    @staticmethod
    def artist(artist_id: str) -> str:
        return f"artist:{artist_id}"

    @staticmethod
    def artists(page: int) -> str:
        return f"artists:{page}"

    @staticmethod
    def events(location: str, date: str) -> str:
        return f"events:{location}:{date}"

    @staticmethod
    def search(query: str, filters: str) -> str:
        return f"search:{query}:{filters}"

    @staticmethod
    def exchange_rate(from_currency: str, to_currency: str) -> str:
        return f"exchange_rate:{from_currency}:{to_currency}"

    @staticmethod
    def api_usage(service: str, date: str) -> str:
        return f"api_usage:{service}:{date}"

    @staticmethod
    def mass_reporting(content_id: str) -> str:
        return f"mass_reporting:{content_id}"

    @staticmethod
    def appeal(appeal_id: str) -> str:
        return f"appeal:{appeal_id}"

    @staticmethod
    def recovery(request_id: str) -> str:
        return f"recovery:{request_id}"


class CacheTags:
    USER = "user"
    POST = "post"
    ARTIST = "artist"
    EVENT = "event"
    SEARCH = "search"
    API_USAGE = "api_usage"
    MODERATION = "moderation"
    PAYMENT = "payment"

    @classmethod
    def all(cls) -> list[str]:
        return [cls.USER, cls.POST, cls.ARTIST, cls.EVENT, cls.SEARCH, cls.API_USAGE, cls.MODERATION, cls.PAYMENT]
