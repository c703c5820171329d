from swrproxy._background import BackgroundScheduler, ImmediateScheduler, TaskGroupScheduler
from swrproxy._config import Config, create_storage, get_default_config
from swrproxy._exceptions import ConfigurationError, OriginError, StorageError, SWRProxyError
from swrproxy._headers import CacheControl, Headers, parse_cache_control
from swrproxy._httpx import HttpxRequestSender
from swrproxy._models import (
    CACHE_CONTROL_HEADER as CACHE_CONTROL_HEADER,
    CACHE_STALE_AT_HEADER as CACHE_STALE_AT_HEADER,
    CACHE_STATUS_HEADER as CACHE_STATUS_HEADER,
    CLIENT_CACHE_CONTROL_HEADER as CLIENT_CACHE_CONTROL_HEADER,
    ORIGIN_CACHE_CONTROL_HEADER as ORIGIN_CACHE_CONTROL_HEADER,
    ORIGIN_CF_CACHE_STATUS_HEADER as ORIGIN_CF_CACHE_STATUS_HEADER,
    UNSET as UNSET,
    CacheStatus as CacheStatus,
    Request as Request,
    Response as Response,
    add_headers as add_headers,
)
from swrproxy._policies import (
    CacheOptions,
    EdgePolicy,
    ResolvedCacheControl,
    resolve_cache_control,
    resolve_client_policy,
    resolve_edge_policy,
)
from swrproxy._serializers import BaseSerializer, JSONSerializer, PickleSerializer, YAMLSerializer
from swrproxy._storages import AsyncBaseStorage, AsyncFileStorage, AsyncInMemoryStorage, AsyncRedisStorage
from swrproxy._swr import AsyncSWRCache
from swrproxy._utils import BaseClock, Clock, generate_key

__all__ = (
    # Cache
    "AsyncSWRCache",
    "CacheOptions",
    ## Background work
    "BackgroundScheduler",
    "ImmediateScheduler",
    "TaskGroupScheduler",
    ## Origin
    "HttpxRequestSender",
    # Models
    "Request",
    "Response",
    "CacheStatus",
    "add_headers",
    "UNSET",
    "CACHE_CONTROL_HEADER",
    "CACHE_STALE_AT_HEADER",
    "CACHE_STATUS_HEADER",
    "CLIENT_CACHE_CONTROL_HEADER",
    "ORIGIN_CACHE_CONTROL_HEADER",
    "ORIGIN_CF_CACHE_STATUS_HEADER",
    # Headers
    "Headers",
    "CacheControl",
    "parse_cache_control",
    # Policies
    "EdgePolicy",
    "ResolvedCacheControl",
    "resolve_cache_control",
    "resolve_client_policy",
    "resolve_edge_policy",
    # Storages
    "AsyncBaseStorage",
    "AsyncFileStorage",
    "AsyncInMemoryStorage",
    "AsyncRedisStorage",
    # Serializers
    "BaseSerializer",
    "JSONSerializer",
    "PickleSerializer",
    "YAMLSerializer",
    # Config
    "Config",
    "create_storage",
    "get_default_config",
    # Utils
    "BaseClock",
    "Clock",
    "generate_key",
    # Exceptions
    "SWRProxyError",
    "ConfigurationError",
    "OriginError",
    "StorageError",
)
