from __future__ import annotations


class GlocalError(Exception):
    code: str = "glocal_error"
    message: str = "Internal error"

    def __init__(self, message: str | None = None, code: str | None = None):
        self.message = message or self.message
        self.code = code or self.code
        super().__init__(self.message)


class ConfigurationError(GlocalError):
    code = "configuration_error"
    message = "Invalid configuration"


class CacheSerializationError(GlocalError):
    code = "cache_serialization_error"
    message = "Cached payload could not be decoded"


class UsageQueryError(GlocalError):
    code = "usage_query_error"
    message = "Usage ledger query failed"
