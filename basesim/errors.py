"""Exceptions raised at the infrastructure boundaries of basesim."""


class BasesimError(Exception):
    """Base class for basesim errors."""


class PersistenceError(BasesimError):
    """A ledger store could not read or write its backing storage."""


class PriceUnavailableError(BasesimError):
    """No usable price could be obtained for a token."""


class ConfigurationError(BasesimError, ValueError):
    """Settings do not describe a usable backend."""
