"""
Socket.IO event names for the realtime database gateway.
"""


class C2SEvent:
    OBSERVE = "db:observe"
    UNOBSERVE = "db:unobserve"


class S2CEvent:
    CHILD_ADDED = "db:child_added"
    CHILD_CHANGED = "db:child_changed"
    CHILD_REMOVED = "db:child_removed"
    OBSERVE_ERROR = "db:observe_error"


# S2C child event -> change kind delivered to observers
CHILD_EVENT_KINDS = {
    S2CEvent.CHILD_ADDED: "added",
    S2CEvent.CHILD_CHANGED: "changed",
    S2CEvent.CHILD_REMOVED: "removed",
}
