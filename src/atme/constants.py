"""Shared defaults."""

DEFAULT_WINDOW_SIZE = 25
RESULTS_COUNT = 10
MAX_TRANSACTION_ATTEMPTS = 5
PICTURE_MESSAGE_BODY = "Picture message"

CONVERSATIONS_PATH = "conversations"
USER_INFORMATION_PATH = "userInformation"
REGISTERED_USERNAMES_PATH = "registeredUsernames"


def messages_path(conversation_id: str) -> str:
    return f"{CONVERSATIONS_PATH}/{conversation_id}/messages"


def members_path(conversation_id: str) -> str:
    return f"{CONVERSATIONS_PATH}/{conversation_id}/activeMembers"


def last_seen_path(conversation_id: str) -> str:
    return f"{CONVERSATIONS_PATH}/{conversation_id}/lastSeen"
