class SwapWatchError(Exception):
    """Base class for swap watcher errors"""


class DataUnavailable(SwapWatchError):
    """A ledger record needed to explain a transaction does not exist (yet)"""


class MintNotFound(DataUnavailable):
    def __init__(self, mint: str, reason: str = "mint account not found"):
        self.mint = mint
        super().__init__(f"{mint}: {reason}")


class MetadataUnavailable(DataUnavailable):
    def __init__(self, mint: str):
        self.mint = mint
        super().__init__(f"{mint}: no metadata account or registry entry")


class RpcError(SwapWatchError):
    """The node answered with a JSON-RPC error object"""

    def __init__(self, method: str, error):
        self.method = method
        self.error = error
        super().__init__(f"{method} failed: {error}")


class SubscriptionTransportError(SwapWatchError):
    """The log subscription stream failed or was closed by the node"""
