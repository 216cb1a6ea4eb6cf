"""
Authorization Gate: role ranks, capabilities and the action table.

WHY: Every ledger mutation declares the minimum role it needs in one place,
and the decision is a pure function of (role, capabilities, action, target).
Nothing here touches the database, so a denied request can never leave a
partial write behind.

DESIGN PRINCIPLES:
- Roles are strictly ordered: regular < cashier < manager < superuser
- ORGANIZER is a capability, not a role: implicit for manager and above,
  explicit for accounts listed as an event's organizer
- Self-service actions additionally require actor == resource owner,
  regardless of rank
- Fail closed: unknown actions are denied
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum

from .errors import AuthorizationError, ValidationError


# =============================================================================
# ROLES AND CAPABILITIES
# =============================================================================

class Role(IntEnum):
    REGULAR = 0
    CASHIER = 1
    MANAGER = 2
    SUPERUSER = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value) -> "Role":
        if isinstance(value, Role):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                pass
        raise ValidationError("role must be one of regular|cashier|manager|superuser")


class Capability(str, Enum):
    ORGANIZER = "organizer"


# =============================================================================
# ACTIONS
# =============================================================================

class Action(str, Enum):
    # Accounts
    VIEW_OWN_PROFILE = "VIEW_OWN_PROFILE"
    UPDATE_OWN_PROFILE = "UPDATE_OWN_PROFILE"
    CREATE_ACCOUNT = "CREATE_ACCOUNT"
    VIEW_ACCOUNT = "VIEW_ACCOUNT"
    LIST_ACCOUNTS = "LIST_ACCOUNTS"
    UPDATE_ACCOUNT = "UPDATE_ACCOUNT"
    VERIFY_ACCOUNT = "VERIFY_ACCOUNT"
    CHANGE_ROLE = "CHANGE_ROLE"
    FLAG_ACCOUNT = "FLAG_ACCOUNT"

    # Ledger
    CREATE_PURCHASE = "CREATE_PURCHASE"
    CREATE_ADJUSTMENT = "CREATE_ADJUSTMENT"
    REQUEST_REDEMPTION = "REQUEST_REDEMPTION"
    PROCESS_REDEMPTION = "PROCESS_REDEMPTION"
    CREATE_TRANSFER = "CREATE_TRANSFER"
    LIST_OWN_TRANSACTIONS = "LIST_OWN_TRANSACTIONS"
    LIST_TRANSACTIONS = "LIST_TRANSACTIONS"
    VIEW_TRANSACTION = "VIEW_TRANSACTION"
    FLAG_TRANSACTION = "FLAG_TRANSACTION"

    # Promotions
    VIEW_PROMOTIONS = "VIEW_PROMOTIONS"
    MANAGE_PROMOTIONS = "MANAGE_PROMOTIONS"

    # Events
    VIEW_EVENTS = "VIEW_EVENTS"
    RSVP_EVENT = "RSVP_EVENT"
    MANAGE_EVENTS = "MANAGE_EVENTS"
    MANAGE_ORGANIZERS = "MANAGE_ORGANIZERS"
    EDIT_EVENT = "EDIT_EVENT"
    MANAGE_EVENT_GUESTS = "MANAGE_EVENT_GUESTS"
    AWARD_EVENT_POINTS = "AWARD_EVENT_POINTS"


# Minimum role per action
ACTION_MIN_ROLE: dict[Action, Role] = {
    Action.VIEW_OWN_PROFILE: Role.REGULAR,
    Action.UPDATE_OWN_PROFILE: Role.REGULAR,
    Action.CREATE_ACCOUNT: Role.CASHIER,
    Action.VIEW_ACCOUNT: Role.CASHIER,
    Action.LIST_ACCOUNTS: Role.MANAGER,
    Action.UPDATE_ACCOUNT: Role.MANAGER,
    Action.VERIFY_ACCOUNT: Role.CASHIER,
    Action.CHANGE_ROLE: Role.MANAGER,
    Action.FLAG_ACCOUNT: Role.MANAGER,

    Action.CREATE_PURCHASE: Role.CASHIER,
    Action.CREATE_ADJUSTMENT: Role.MANAGER,
    Action.REQUEST_REDEMPTION: Role.REGULAR,
    Action.PROCESS_REDEMPTION: Role.CASHIER,
    Action.CREATE_TRANSFER: Role.REGULAR,
    Action.LIST_OWN_TRANSACTIONS: Role.REGULAR,
    Action.LIST_TRANSACTIONS: Role.CASHIER,
    Action.VIEW_TRANSACTION: Role.MANAGER,
    Action.FLAG_TRANSACTION: Role.MANAGER,

    Action.VIEW_PROMOTIONS: Role.REGULAR,
    Action.MANAGE_PROMOTIONS: Role.MANAGER,

    Action.VIEW_EVENTS: Role.REGULAR,
    Action.RSVP_EVENT: Role.REGULAR,
    Action.MANAGE_EVENTS: Role.MANAGER,
    Action.MANAGE_ORGANIZERS: Role.MANAGER,
    Action.EDIT_EVENT: Role.MANAGER,
    Action.MANAGE_EVENT_GUESTS: Role.MANAGER,
    Action.AWARD_EVENT_POINTS: Role.MANAGER,
}

# Actions an event organizer may perform on their own event below the min role
ORGANIZER_ACTIONS = frozenset({
    Action.EDIT_EVENT,
    Action.MANAGE_EVENT_GUESTS,
    Action.AWARD_EVENT_POINTS,
})

# Actions that only the resource owner may perform
SELF_ACTIONS = frozenset({
    Action.VIEW_OWN_PROFILE,
    Action.UPDATE_OWN_PROFILE,
    Action.REQUEST_REDEMPTION,
    Action.CREATE_TRANSFER,
    Action.LIST_OWN_TRANSACTIONS,
})

# Granting or revoking these roles is superuser-only
ELEVATED_ROLES = frozenset({Role.MANAGER, Role.SUPERUSER})


# =============================================================================
# DECISIONS
# =============================================================================

@dataclass(frozen=True)
class Target:
    """What an action is aimed at. Every field is optional."""
    owner_id: int | None = None
    current_role: Role | None = None
    new_role: Role | None = None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def deny(reason: str) -> Decision:
    return Decision(False, reason)


def has_role(role: Role, minimum: Role) -> bool:
    return Role(role) >= Role(minimum)


def capabilities_for(role: Role, *, organizes_event: bool = False) -> frozenset[Capability]:
    if organizes_event or has_role(role, Role.MANAGER):
        return frozenset({Capability.ORGANIZER})
    return frozenset()


def authorize(
    actor_role: Role,
    actor_capabilities: frozenset[Capability] | set[Capability],
    action: Action,
    target: Target | None = None,
    *,
    actor_id: int | None = None,
) -> Decision:
    """
    Decide whether an actor may perform an action.

    Pure function: no database access and no side effects.
    """
    minimum = ACTION_MIN_ROLE.get(action)
    if minimum is None:
        return deny(f"Unknown action {action}")

    target = target or Target()

    if action in SELF_ACTIONS:
        if target.owner_id is not None and actor_id != target.owner_id:
            return deny("Forbidden: only the owner may perform this action")

    if not has_role(actor_role, minimum):
        organizer_ok = (
            action in ORGANIZER_ACTIONS
            and Capability.ORGANIZER in actor_capabilities
        )
        if not organizer_ok:
            return deny(
                f"Forbidden: {action.value} requires {minimum.label} or higher"
            )

    if action == Action.CHANGE_ROLE:
        touches_elevated = (
            target.new_role in ELEVATED_ROLES
            or target.current_role in ELEVATED_ROLES
        )
        if touches_elevated and not has_role(actor_role, Role.SUPERUSER):
            return deny("Managers can only set role to regular or cashier")

    return ALLOW


def require(
    actor_role: Role,
    actor_capabilities: frozenset[Capability] | set[Capability],
    action: Action,
    target: Target | None = None,
    *,
    actor_id: int | None = None,
) -> None:
    """Raise AuthorizationError unless authorize() allows the action."""
    decision = authorize(actor_role, actor_capabilities, action, target, actor_id=actor_id)
    if not decision:
        raise AuthorizationError(decision.reason)


def require_actor(actor, action: Action, target: Target | None = None, *, organizes_event: bool = False) -> None:
    """
    require() for an Account-like actor (anything with `id` and `role_enum`).
    """
    role = actor.role_enum
    require(
        role,
        capabilities_for(role, organizes_event=organizes_event),
        action,
        target,
        actor_id=actor.id,
    )
