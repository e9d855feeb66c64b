"""
Module: event_types.py
Description: Catalog of gateway event types accepted for delivery.
"""

from typing import FrozenSet

SUPPORTED_EVENT_TYPES: FrozenSet[str] = frozenset({
    # Messages and communication
    "Message",
    "UndecryptableMessage",
    "Receipt",
    "MediaRetry",
    "ReadReceipt",

    # Groups and contacts
    "GroupInfo",
    "JoinedGroup",
    "Picture",
    "BlocklistChange",
    "Blocklist",

    # Connection and session
    "Connected",
    "Disconnected",
    "ConnectFailure",
    "KeepAliveRestored",
    "KeepAliveTimeout",
    "LoggedOut",
    "ClientOutdated",
    "TemporaryBan",
    "StreamError",
    "StreamReplaced",
    "PairSuccess",
    "PairError",
    "QR",
    "QRCode",
    "QRTimeout",
    "QRSuccess",
    "QRScannedWithoutMultidevice",

    # Privacy and settings
    "PrivacySettings",
    "PushNameSetting",
    "UserAbout",

    # Synchronization and state
    "AppState",
    "AppStateSyncComplete",
    "HistorySync",
    "OfflineSyncCompleted",
    "OfflineSyncPreview",

    # Calls
    "CallOffer",
    "CallAccept",
    "CallTerminate",
    "CallOfferNotice",
    "CallRelayLatency",

    # Presence and activity
    "Presence",
    "ChatPresence",

    # Identity
    "IdentityChange",

    # Errors
    "CATRefreshError",

    # Newsletters
    "NewsletterJoin",
    "NewsletterLeave",
    "NewsletterMuteChange",
    "NewsletterLiveUpdate",

    # Meta bridge
    "FBMessage",

    # Subscribes to every event
    "All",
})


def is_valid_event_type(event_type: str) -> bool:
    """Check whether an event type is part of the supported catalog."""
    return event_type in SUPPORTED_EVENT_TYPES
