"""Storage collaborator adapters.

The change feed publishes committed row changes on the messaging relations.
"""

from duet.store.feed import ChangeFeed, Channel, Notification, get_change_feed, stage_change

__all__ = [
    "ChangeFeed",
    "Channel",
    "Notification",
    "get_change_feed",
    "stage_change",
]
