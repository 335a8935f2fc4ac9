
from .aliases import AliasesMapping
from .engagement import should_engage
from .history import ChannelHistory, ChannelID

__all__ = ["AliasesMapping", "ChannelHistory", "ChannelID", "should_engage"]
