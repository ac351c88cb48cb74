"""
Permission Matrix
-----------------
Static mapping from each permission to the tenant-kind/role columns that hold
it. The matrix seeds every organization's materialized ``permissions`` rows
and is never mutated at runtime.

Columns:
    public{Learner,Trainer,Admin,SuperAdmin}
    organization{Learner,Trainer,Admin,Owner}

The organization "Owner" column becomes a row keyed ``"Owner"``; such rows
are granted through ``membership.is_owner`` only.
"""

from enum import Enum
from typing import Dict, FrozenSet, List, Tuple

from app.models.identity_models import Role, RolePermission


class Permission(str, Enum):
    DASHBOARD_VIEW = "Dashboard.View"

    SERVICE_VIEW = "Service.View"
    SERVICE_CREATE = "Service.Create"
    SERVICE_UPDATE = "Service.Update"
    SERVICE_DELETE = "Service.Delete"

    TEMPLATE_VIEW = "Template.View"
    TEMPLATE_CREATE = "Template.Create"
    TEMPLATE_UPDATE = "Template.Update"
    TEMPLATE_DELETE = "Template.Delete"

    CHARACTER_VIEW = "Character.View"
    CHARACTER_CREATE = "Character.Create"
    CHARACTER_UPDATE = "Character.Update"
    CHARACTER_DELETE = "Character.Delete"

    SIMULATION_CREATE = "Simulation.Create"
    TRANSCRIPT_CREATE = "Transcript.Create"

    USER_VIEW = "User.View"
    USER_CREATE = "User.Create"
    USER_UPDATE = "User.Update"
    USER_DELETE = "User.Delete"

    ORGANIZATION_VIEW = "Organization.View"
    ORGANIZATION_CREATE = "Organization.Create"
    ORGANIZATION_UPDATE = "Organization.Update"
    ORGANIZATION_DELETE = "Organization.Delete"

    ORGANIZATION_SETTINGS_VIEW = "Organization.Settings.View"
    ORGANIZATION_SETTINGS_CREATE = "Organization.Settings.Create"
    ORGANIZATION_SETTINGS_UPDATE = "Organization.Settings.Update"

    ORGANIZATION_SUBSCRIPTION_VIEW = "Organization.Subscription.View"
    ORGANIZATION_SUBSCRIPTION_CREATE = "Organization.Subscription.Create"
    ORGANIZATION_SUBSCRIPTION_UPDATE = "Organization.Subscription.Update"

    ORGANIZATION_USAGE_VIEW = "Organization.Usage.View"

    INVITATION_CREATE = "Invitation.Create"
    INVITATION_UPDATE = "Invitation.Update"

    LOG_VIEW = "Log.View"

    ACCOUNT_VIEW = "Account.View"
    ACCOUNT_CREATE = "Account.Create"
    ACCOUNT_UPDATE = "Account.Update"

    SUBSCRIPTION_VIEW = "Subscription.View"
    SUBSCRIPTION_CREATE = "Subscription.Create"
    SUBSCRIPTION_UPDATE = "Subscription.Update"


PUBLIC_LEARNER = "publicLearner"
PUBLIC_TRAINER = "publicTrainer"
PUBLIC_ADMIN = "publicAdmin"
PUBLIC_SUPER_ADMIN = "publicSuperAdmin"
ORGANIZATION_LEARNER = "organizationLearner"
ORGANIZATION_TRAINER = "organizationTrainer"
ORGANIZATION_ADMIN = "organizationAdmin"
ORGANIZATION_OWNER = "organizationOwner"

EVERYONE = frozenset(
    {
        PUBLIC_LEARNER,
        PUBLIC_TRAINER,
        PUBLIC_ADMIN,
        PUBLIC_SUPER_ADMIN,
        ORGANIZATION_LEARNER,
        ORGANIZATION_TRAINER,
        ORGANIZATION_ADMIN,
        ORGANIZATION_OWNER,
    }
)
ADMINS_AND_TRAINERS = frozenset(
    {
        PUBLIC_TRAINER,
        PUBLIC_ADMIN,
        PUBLIC_SUPER_ADMIN,
        ORGANIZATION_TRAINER,
        ORGANIZATION_ADMIN,
        ORGANIZATION_OWNER,
    }
)
ADMINS = frozenset(
    {PUBLIC_ADMIN, PUBLIC_SUPER_ADMIN, ORGANIZATION_ADMIN, ORGANIZATION_OWNER}
)
LEARNERS = frozenset({PUBLIC_LEARNER, ORGANIZATION_LEARNER})
PUBLIC_ADMINS = frozenset({PUBLIC_ADMIN, PUBLIC_SUPER_ADMIN})
PUBLIC_USERS = frozenset({PUBLIC_LEARNER, PUBLIC_TRAINER})
OWNER_ONLY = frozenset({ORGANIZATION_OWNER})

PERMISSION_RECORD: Tuple[Tuple[Permission, FrozenSet[str]], ...] = (
    (Permission.DASHBOARD_VIEW, EVERYONE),
    (Permission.SERVICE_VIEW, EVERYONE),
    (Permission.SERVICE_CREATE, ADMINS_AND_TRAINERS),
    (Permission.SERVICE_UPDATE, ADMINS_AND_TRAINERS),
    (Permission.SERVICE_DELETE, ADMINS_AND_TRAINERS),
    (Permission.TEMPLATE_VIEW, ADMINS_AND_TRAINERS),
    (Permission.TEMPLATE_CREATE, ADMINS_AND_TRAINERS),
    (Permission.TEMPLATE_UPDATE, ADMINS_AND_TRAINERS),
    (Permission.TEMPLATE_DELETE, ADMINS_AND_TRAINERS),
    (Permission.CHARACTER_VIEW, ADMINS_AND_TRAINERS),
    (Permission.CHARACTER_CREATE, ADMINS_AND_TRAINERS),
    (Permission.CHARACTER_UPDATE, ADMINS_AND_TRAINERS),
    (Permission.CHARACTER_DELETE, ADMINS_AND_TRAINERS),
    (Permission.SIMULATION_CREATE, LEARNERS),
    (Permission.TRANSCRIPT_CREATE, LEARNERS),
    (Permission.USER_VIEW, ADMINS),
    (Permission.USER_CREATE, ADMINS),
    (Permission.USER_UPDATE, ADMINS),
    (Permission.USER_DELETE, ADMINS),
    (Permission.ORGANIZATION_VIEW, ADMINS),
    (Permission.ORGANIZATION_CREATE, PUBLIC_ADMINS),
    (Permission.ORGANIZATION_UPDATE, PUBLIC_ADMINS),
    (Permission.ORGANIZATION_DELETE, PUBLIC_ADMINS),
    (Permission.ORGANIZATION_SETTINGS_VIEW, OWNER_ONLY),
    (Permission.ORGANIZATION_SETTINGS_CREATE, OWNER_ONLY),
    (Permission.ORGANIZATION_SETTINGS_UPDATE, OWNER_ONLY),
    (Permission.ORGANIZATION_SUBSCRIPTION_VIEW, OWNER_ONLY),
    (Permission.ORGANIZATION_SUBSCRIPTION_CREATE, OWNER_ONLY),
    (Permission.ORGANIZATION_SUBSCRIPTION_UPDATE, OWNER_ONLY),
    (Permission.ORGANIZATION_USAGE_VIEW, OWNER_ONLY),
    (Permission.INVITATION_CREATE, ADMINS),
    (Permission.INVITATION_UPDATE, EVERYONE),
    (Permission.LOG_VIEW, ADMINS),
    (Permission.ACCOUNT_VIEW, EVERYONE),
    (Permission.ACCOUNT_CREATE, EVERYONE),
    (Permission.ACCOUNT_UPDATE, EVERYONE),
    (Permission.SUBSCRIPTION_VIEW, PUBLIC_USERS),
    (Permission.SUBSCRIPTION_CREATE, PUBLIC_USERS),
    (Permission.SUBSCRIPTION_UPDATE, PUBLIC_USERS),
)

# Row order matters: the first matching row is reported as the granting role.
ORGANIZATION_ROWS: Tuple[Tuple[str, str], ...] = (
    (Role.LEARNER.value, ORGANIZATION_LEARNER),
    (Role.TRAINER.value, ORGANIZATION_TRAINER),
    (Role.ADMIN.value, ORGANIZATION_ADMIN),
    (Role.OWNER.value, ORGANIZATION_OWNER),
)
PUBLIC_ROWS: Tuple[Tuple[str, str], ...] = (
    (Role.LEARNER.value, PUBLIC_LEARNER),
    (Role.TRAINER.value, PUBLIC_TRAINER),
    (Role.ADMIN.value, PUBLIC_ADMIN),
    (Role.SUPER_ADMIN.value, PUBLIC_SUPER_ADMIN),
)


def select_column(column: str) -> List[str]:
    """Permissions held by one matrix column, in record order."""
    return [
        permission.value
        for permission, columns in PERMISSION_RECORD
        if column in columns
    ]


def default_permission_rows(is_public: bool) -> List[RolePermission]:
    """Rows used to seed an organization's materialized permission matrix."""
    rows = PUBLIC_ROWS if is_public else ORGANIZATION_ROWS
    return [
        RolePermission(role=role, permissions=select_column(column))
        for role, column in rows
    ]


def permission_columns() -> Dict[str, FrozenSet[str]]:
    """Permission name to holding columns, for diagnostics and tests."""
    return {permission.value: columns for permission, columns in PERMISSION_RECORD}
