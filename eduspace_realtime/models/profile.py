from typing import Literal, Optional, TypedDict


PushPermission = Literal["default", "granted", "denied"]
UserRole = Literal["student", "lecturer", "admin"]


class PushSubscriptionState(TypedDict, total=False):
    permission: PushPermission
    enabled: bool


class ProfileDocument(TypedDict, total=False):
    _id: str
    user_id: str
    full_name: str
    avatar_url: str
    role: UserRole
    # missing means enabled
    notifications_enabled: bool
    push_subscription: PushSubscriptionState


class UserSummary(TypedDict):
    name: str
    avatar_url: Optional[str]
    role: Optional[str]
