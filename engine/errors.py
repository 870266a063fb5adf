class CheckerError(Exception):
    """Base class for url-checker errors."""


class ConfigError(CheckerError):
    """Invalid run configuration or unreadable target list.

    Raised before any probing starts, so a run never leaves partial state
    behind when it is refused.
    """


class DuplicateIndexError(CheckerError):
    """An outcome was recorded twice for the same target index."""

    def __init__(self, index: int):
        super().__init__(f"outcome for target index {index} already recorded")
        self.index = index
