"""
Exception hierarchy for TikTok Live Recorder.

Every error raised by the recorder derives from TikTokRecorderError, so
callers can catch the whole family at the entry point.
"""

from enum import Enum


class TikTokError(str, Enum):
    """User-facing error messages."""
    USER_NOT_CURRENTLY_LIVE = "The user is not hosting a live stream at the moment."
    ACCOUNT_PRIVATE_FOLLOW = "This account is private. Follow the creator to access their LIVE."
    ACCOUNT_PRIVATE = "Account is private, login required. Please add your session cookie to the config."
    COUNTRY_BLACKLISTED = "Captcha required or country blocked. Use a VPN, room_id, or authenticate with cookies."
    COUNTRY_BLACKLISTED_AUTO_MODE = (
        "Automatic mode is available only in unblocked countries. "
        "Use a VPN or authenticate with cookies."
    )
    COUNTRY_BLACKLISTED_FOLLOWERS_MODE = (
        "Followers mode is available only in unblocked countries. "
        "Use a VPN or authenticate with cookies."
    )
    USERNAME_ERROR = "Username / RoomID not found or the user has never been in live."
    ROOM_ID_ERROR = "Error extracting RoomID"
    RETRIEVE_LIVE_URL = "Unable to retrieve live streaming url. Please try again later."
    INVALID_TIKTOK_LIVE_URL = "The provided URL is not a valid TikTok live stream."
    LIVE_RESTRICTION = "Live is private, login required. Please add your session cookie to the config."
    WAF_BLOCKED = "IP blocked by anti-bot protection"
    FOLLOWERS_RETRIEVE = "Failed to retrieve followers list."
    FOLLOWERS_EMPTY = "Followers list is empty."
    SEC_UID = "Failed to retrieve sec_uid."
    CONNECTION_CLOSED = "Connection broken by the server."
    CONNECTION_CLOSED_AUTOMATIC = "Connection broken by the server. Try again after delay of 2 minutes"

    def __str__(self) -> str:
        return self.value


class AccessRestriction(Enum):
    """Kinds of access restriction reported by the platform."""
    ACCOUNT_PRIVATE = "account_private"
    ACCOUNT_PRIVATE_FOLLOW = "account_private_follow"
    LIVE_RESTRICTED = "live_restricted"
    REGION_BLOCKED = "region_blocked"


RESTRICTION_MESSAGES = {
    AccessRestriction.ACCOUNT_PRIVATE: TikTokError.ACCOUNT_PRIVATE,
    AccessRestriction.ACCOUNT_PRIVATE_FOLLOW: TikTokError.ACCOUNT_PRIVATE_FOLLOW,
    AccessRestriction.LIVE_RESTRICTED: TikTokError.LIVE_RESTRICTION,
    AccessRestriction.REGION_BLOCKED: TikTokError.COUNTRY_BLACKLISTED,
}


class TikTokRecorderError(Exception):
    """Base class for all recorder errors."""

    def __init__(self, message=""):
        super().__init__(str(message))


class UserLiveError(TikTokRecorderError):
    """The subject is not broadcasting right now."""

    def __init__(self, message=TikTokError.USER_NOT_CURRENTLY_LIVE):
        super().__init__(message)


class LiveNotFound(TikTokRecorderError):
    """The target (URL, handle or room) could not be found."""


class TargetResolutionError(LiveNotFound):
    """A handle or room id could not be translated into its counterpart."""


class AccessRestricted(TikTokRecorderError):
    """
    The platform refused access to the subject.

    Attributes:
        kind: Which restriction was hit. Each kind has its own message.
    """

    def __init__(self, kind: AccessRestriction, message=None):
        self.kind = kind
        super().__init__(message or RESTRICTION_MESSAGES[kind])


class ChallengeUnsolvable(TikTokRecorderError):
    """The anti-bot proof-of-work could not be solved."""

    def __init__(self, message=TikTokError.WAF_BLOCKED):
        super().__init__(message)


class TransportError(TikTokRecorderError):
    """Network-level failure (connection, timeout, 5xx)."""


class EmptyFollowerSet(TikTokRecorderError):
    """The followed-accounts list came back empty."""

    def __init__(self, message=TikTokError.FOLLOWERS_EMPTY):
        super().__init__(message)


class ConfigError(TikTokRecorderError):
    """Invalid configuration value."""
