# db/enums.py
import enum

class VoteAction(enum.StrEnum):
    ADDED = "added"
    REMOVED = "removed"
    MOVED = "moved"

class MemberRole(enum.StrEnum):
    OWNER = "owner"
    MEMBER = "member"
