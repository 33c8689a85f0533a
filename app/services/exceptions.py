"""Domain-specific exceptions."""


class ServiceError(Exception):
    pass


class PluginLoadError(ServiceError):
    pass


class TransportError(ServiceError):
    pass


class LedgerError(ServiceError):
    pass
