"""Services package."""

from teamhub.services.access_control import (
    POLICIES,
    Operation,
    get_visible,
    has_team_access,
    is_team_member,
    is_team_owner,
    policy_for,
    scoped_select,
)
from teamhub.services.accounts import authenticate, bootstrap_profile, create_account
from teamhub.services.team_overview import TeamOverview, get_team_overview, list_team_overviews

__all__ = [
    "POLICIES",
    "Operation",
    "get_visible",
    "has_team_access",
    "is_team_member",
    "is_team_owner",
    "policy_for",
    "scoped_select",
    "authenticate",
    "bootstrap_profile",
    "create_account",
    "TeamOverview",
    "get_team_overview",
    "list_team_overviews",
]
