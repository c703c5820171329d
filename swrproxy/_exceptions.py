__all__ = ("SWRProxyError", "StorageError", "OriginError", "ConfigurationError")


class SWRProxyError(Exception): ...


class StorageError(SWRProxyError): ...


class OriginError(SWRProxyError): ...


class ConfigurationError(SWRProxyError): ...
