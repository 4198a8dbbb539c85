from __future__ import annotations


class ConfigurationError(ValueError):
    """
    Invalid host configuration (bad accessor, missing render callbacks, ...).

    Raised at construction time; the session cannot proceed without a valid config.
    """


class DataError(ValueError):
    """
    A single item whose coordinate cannot be resolved.

    Conversion recovers from this by skipping the item.
    """


class StateError(RuntimeError):
    """
    An operation was sequenced incorrectly, e.g. querying an index before it was loaded.
    """
