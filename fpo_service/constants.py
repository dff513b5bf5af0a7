"""
AAA role and group catalog applied to every newly provisioned FPO.

These names must match the roles and groups configured in the AAA service;
changes have to be coordinated with the AAA service owners.
"""

ROLE_FPO_CEO = "CEO"

AAA_RESOURCE_FPO = "fpo"
AAA_RESOURCE_FPO_LIFECYCLE = "fpo_lifecycle"
AAA_ORG_TYPE_FPO = "FPO"

# group name → permission verbs granted on the "fpo" resource
DEFAULT_GROUP_PERMISSIONS = {
    "directors": ["manage", "read", "write", "approve"],
    "shareholders": ["read", "vote"],
    "store_staff": ["read", "write", "inventory"],
    "store_managers": ["read", "write", "manage", "inventory", "reports"],
}

# The CEO joins this group so the AAA service gives them org context.
CEO_GROUP = "directors"


def default_role_catalog(ceo_user_id: str | None = None) -> dict:
    """Payload for the assign-default-roles call."""
    groups = [
        {
            "name": name,
            "resource": AAA_RESOURCE_FPO,
            "permissions": list(perms),
        }
        for name, perms in DEFAULT_GROUP_PERMISSIONS.items()
    ]
    catalog = {"groups": groups, "roles": []}
    if ceo_user_id:
        catalog["roles"].append({"user_id": ceo_user_id, "role": ROLE_FPO_CEO})
        catalog["memberships"] = [{"user_id": ceo_user_id, "group": CEO_GROUP}]
    return catalog
