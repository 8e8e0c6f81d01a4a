"""Exception taxonomy for the aggregation and alerting engines."""


class PortfolioEngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(PortfolioEngineError):
    """
    Malformed input supplied by the caller.

    Never retried.

    Attributes
    ----------
    field : str | None
        Offending field name, when the error is tied to one

    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class InvalidAddress(ValidationError):
    """Address is not a well-formed (checksum-valid) hex address."""

    def __init__(self, address: str) -> None:
        super().__init__(f"invalid address format: {address!r}", field="address")
        self.address = address


class MissingFieldError(ValidationError):
    """A required alert condition field is absent."""

    def __init__(self, field: str) -> None:
        super().__init__(f"required field missing: {field}", field=field)


class InvalidOperatorError(ValidationError):
    """Comparison operator is not one of the supported operators."""

    def __init__(self, operator: object) -> None:
        super().__init__(f"invalid operator: {operator!r}", field="operator")
        self.operator = operator


class UnknownAlertKindError(ValidationError):
    """Alert kind is not price, balance or transaction."""

    def __init__(self, kind: object) -> None:
        super().__init__(f"invalid alert type: {kind!r}", field="kind")
        self.kind = kind


class NotFoundError(PortfolioEngineError):
    """Requested entity does not exist (or is not visible to the caller)."""


class NetworkUnavailable(PortfolioEngineError):
    """Network is configured but has no live connection."""


class RPCError(PortfolioEngineError):
    """An RPC call failed after retries."""


class NetworkUnsupportedForTokens(PortfolioEngineError):
    """No static token list exists for the network."""


class PriceUnavailable(PortfolioEngineError):
    """The price oracle has no price for a symbol."""


class UnknownNetworkError(PortfolioEngineError):
    """Network identifier is not known to the registry."""


class NetworkConnectionError(PortfolioEngineError, ConnectionError):
    """Connecting to a network endpoint failed."""


class RefreshCancelled(PortfolioEngineError):
    """A refresh was superseded by a newer request for the same portfolio."""
