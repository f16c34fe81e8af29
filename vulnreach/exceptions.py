"""Custom exceptions for vulnreach."""


class VulnReachError(Exception):
    """Base exception for all vulnreach errors."""


class VulnDBError(VulnReachError):
    """Raised when the vulnerability database cannot be queried.

    Fatal for an analysis: without vulnerability data the result has no meaning.
    """

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


class LoaderError(VulnReachError):
    """Raised when a program or binary description cannot be loaded."""


class GraphInvariantError(VulnReachError):
    """Raised on a broken graph invariant (dangling id, sink rewrite).

    Indicates a bug in a graph builder, not bad input data.
    """
