from dataclasses import dataclass
from typing import Optional

from errors import PermissionDenied

SUPER_ADMIN = "Super Admin"
ADMIN = "Admin"
USER = "User"
ELEVATED_ROLES = (SUPER_ADMIN, ADMIN)

# Products are owned through userId, everything else through createdBy
OWNER_FIELDS = {"products": "userId"}

# Who may delete what
DELETE_ROLES = {
    "clients": (SUPER_ADMIN,),
    "receipts": (SUPER_ADMIN,),
    "users": (SUPER_ADMIN,),
    "quotations": ELEVATED_ROLES,
    "invoices": ELEVATED_ROLES,
    "products": ELEVATED_ROLES,
    "statements": ELEVATED_ROLES,
}


@dataclass(frozen=True)
class FilterContext:
    user_id: Optional[str]
    role: str
    company_id: Optional[str] = None

    @classmethod
    def for_user(cls, user: dict) -> "FilterContext":
        return cls(user_id=user.get("id"), role=resolve_role(user.get("role")), company_id=user.get("companyId"))


def resolve_role(stored_role: Optional[str]) -> str:
    return stored_role if stored_role in ELEVATED_ROLES else USER


def owner_field(entity: str) -> str:
    return OWNER_FIELDS.get(entity, "createdBy")


def scope_filter(ctx: FilterContext, entity: str) -> Optional[dict]:
    """Query predicate restricting a list to what ctx may see.

    Returns None when nothing is visible at all.
    """
    field = owner_field(entity)
    if ctx.role == SUPER_ADMIN:
        return {}
    if ctx.role == ADMIN and ctx.company_id:
        return {"companyId": ctx.company_id}
    if not ctx.user_id:
        return None
    return {field: ctx.user_id}


def can_view(user: dict, doc: dict, entity: str) -> bool:
    ctx = FilterContext.for_user(user)
    predicate = scope_filter(ctx, entity)
    if predicate is None:
        return False
    return all(doc.get(k) == v for k, v in predicate.items())


def can_mutate(user: dict, doc: dict, entity: str = "") -> bool:
    if resolve_role(user.get("role")) in ELEVATED_ROLES:
        return True
    creator = doc.get(owner_field(entity))
    return creator is not None and creator == user.get("id")


def can_delete(user: dict, entity: str) -> bool:
    return resolve_role(user.get("role")) in DELETE_ROLES.get(entity, (SUPER_ADMIN,))


def require_view(user: dict, doc: dict, entity: str) -> None:
    if not can_view(user, doc, entity):
        raise PermissionDenied("You do not have access to this record")


def require_mutate(user: dict, doc: dict, entity: str = "") -> None:
    if not can_mutate(user, doc, entity):
        raise PermissionDenied("Only the creator or an administrator can change this record")


def require_delete(user: dict, entity: str) -> None:
    if not can_delete(user, entity):
        allowed = " or ".join(DELETE_ROLES.get(entity, (SUPER_ADMIN,)))
        raise PermissionDenied(f"Only {allowed} can delete {entity}")


def require_role(user: dict, roles) -> None:
    if resolve_role(user.get("role")) not in roles:
        raise PermissionDenied("Insufficient permissions")


def can_manage_user(actor: dict, target: dict) -> bool:
    """Self, any Super Admin, or an Admin of the target's company."""
    role = resolve_role(actor.get("role"))
    if actor.get("id") == target.get("id") or role == SUPER_ADMIN:
        return True
    return role == ADMIN and actor.get("companyId") is not None and actor.get("companyId") == target.get("companyId")


def require_manage_user(actor: dict, target: dict) -> None:
    if not can_manage_user(actor, target):
        raise PermissionDenied("You can only access your own profile or those of your company")
