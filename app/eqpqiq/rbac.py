"""
Tenant-scoped authorization.

Every protected handler runs inside a TenantContext: the signed-in user, the
health system / program the request targets (from `X-Org-Slug` / `X-Dept-Slug`
or the Referer path), and the role the user holds there.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from functools import wraps
from typing import Any
from urllib.parse import urlparse

from flask import g, request

from app.eqpqiq.db import db_session
from app.eqpqiq.errors import Forbidden, Unauthorized, ValidationError
from app.eqpqiq.models import HealthSystem, OrganizationMembership, Program, Resident, User


ROLE_HIERARCHY: dict[str, int] = {
    "super_admin": 100,
    "admin": 90,
    "program_director": 80,
    "assistant_program_director": 70,
    "clerkship_director": 60,
    "faculty": 50,
    "resident": 20,
    "viewer": 10,
}

PROGRAM_LEADERSHIP_ROLES = (
    "program_director",
    "assistant_program_director",
    "clerkship_director",
    "admin",
    "super_admin",
)
ADMIN_ROLES = ("admin", "super_admin")

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "super_admin": frozenset({"view", "edit", "admin"}),
    "admin": frozenset({"view", "edit", "admin"}),
    "program_director": frozenset({"view", "edit", "admin"}),
    "assistant_program_director": frozenset({"view", "edit"}),
    "clerkship_director": frozenset({"view", "edit"}),
    "faculty": frozenset({"view", "edit"}),
    "resident": frozenset({"view"}),
    "viewer": frozenset({"view"}),
}

ORG_HEADER = "X-Org-Slug"
DEPT_HEADER = "X-Dept-Slug"

NON_TENANT_PREFIXES = frozenset(
    {
        "api",
        "login",
        "register",
        "forgot-password",
        "admin",
        "debug",
        "studio",
        "request-access",
        "update-password",
        "verify-2fa",
        "_next",
    }
)


def role_level(role: str | None) -> int:
    return ROLE_HIERARCHY.get(role or "", 0)


def has_permission(role: str | None, permission: str) -> bool:
    return permission in ROLE_PERMISSIONS.get(role or "", frozenset())


def parse_tenant_route(path: str) -> tuple[str | None, str | None, str]:
    """
    Split `/<org>/<dept>/rest` into (org, dept, "/rest").
    Returns (None, None, path) for non-tenant paths.
    """
    parts = [p for p in (path or "").split("/") if p]
    if len(parts) < 2 or parts[0] in NON_TENANT_PREFIXES:
        return None, None, path or "/"
    rest = "/" + "/".join(parts[2:]) if len(parts) > 2 else "/"
    return parts[0], parts[1], rest


def build_tenant_url(org_slug: str, dept_slug: str, path: str = "/") -> str:
    clean = path if path.startswith("/") else "/" + path
    if clean == "/":
        return f"/{org_slug}/{dept_slug}"
    return f"/{org_slug}/{dept_slug}{clean}"


def _tenant_slugs_from_request() -> tuple[str | None, str | None]:
    org = (request.headers.get(ORG_HEADER) or "").strip() or None
    dept = (request.headers.get(DEPT_HEADER) or "").strip() or None
    if org:
        return org, dept

    referer = request.headers.get("Referer") or ""
    if referer:
        org, dept, _rest = parse_tenant_route(urlparse(referer).path)
        return org, dept
    return None, None


@dataclass
class TenantContext:
    user: User | None
    role: str = "viewer"
    org_slug: str | None = None
    dept_slug: str | None = None
    health_system_id: int | None = None
    program_id: int | None = None
    specialty: str | None = None
    membership: OrganizationMembership | None = None
    member_elsewhere: bool = False
    _level: int = field(default=0, repr=False)

    def __post_init__(self) -> None:
        self._level = role_level(self.role)

    @property
    def has_tenant(self) -> bool:
        return self.health_system_id is not None

    @property
    def is_member(self) -> bool:
        """
        Admins act across tenants. Users without any membership fall back to
        their profile role; members of another org are outsiders here.
        """
        if self.membership is not None or self._level >= ROLE_HIERARCHY["admin"]:
            return True
        return not self.member_elsewhere

    @property
    def is_resident(self) -> bool:
        return self.role == "resident"

    @property
    def is_faculty(self) -> bool:
        return self._level >= ROLE_HIERARCHY["faculty"]

    @property
    def is_program_leadership(self) -> bool:
        return self.role in PROGRAM_LEADERSHIP_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def has_role_at_least(self, role: str) -> bool:
        return self._level >= role_level(role)

    def can(self, permission: str) -> bool:
        return has_permission(self.role, permission)

    def can_access_program(self, program_id: int | None) -> bool:
        if self.is_admin:
            return True
        return program_id is not None and self.program_id == program_id

    def can_access_resident(self, resident: Resident) -> bool:
        if self.is_admin:
            return True
        if self.is_resident:
            return self.user is not None and resident.user_id == self.user.id
        if self.is_faculty:
            return self.program_id is not None and resident.program_id == self.program_id
        return False


def resolve_tenant_context(user: User | None) -> TenantContext:
    org_slug, dept_slug = _tenant_slugs_from_request()
    if user is None:
        return TenantContext(user=None, org_slug=org_slug, dept_slug=dept_slug)

    s = db_session()
    health_system: HealthSystem | None = None
    program: Program | None = None
    if org_slug:
        health_system = (
            s.query(HealthSystem)
            .filter(HealthSystem.slug == org_slug, HealthSystem.is_active.is_(True))
            .one_or_none()
        )
    if health_system and dept_slug:
        program = (
            s.query(Program)
            .filter(
                Program.health_system_id == health_system.id,
                Program.slug == dept_slug,
                Program.is_active.is_(True),
            )
            .one_or_none()
        )

    membership = None
    if health_system:
        candidates = [
            m for m in user.memberships if m.health_system_id == health_system.id and m.status == "active"
        ]
        if program:
            exact = [m for m in candidates if m.program_id == program.id]
            org_wide = [m for m in candidates if m.program_id is None]
            candidates = exact or org_wide
        membership = candidates[0] if candidates else None
        if program is None and not dept_slug and membership and membership.program_id:
            program = s.get(Program, membership.program_id)

    role = (membership.role if membership else None) or user.role or "viewer"

    return TenantContext(
        user=user,
        role=role,
        org_slug=org_slug,
        dept_slug=dept_slug,
        health_system_id=health_system.id if health_system else None,
        program_id=program.id if program else None,
        specialty=program.specialty if program else None,
        membership=membership,
        member_elsewhere=membership is None and any(m.status == "active" for m in user.memberships),
    )


def current_tenant() -> TenantContext:
    ctx = getattr(g, "tenant", None)
    if ctx is None:
        raise RuntimeError("No tenant context (handler not wrapped with require_tenant_auth)")
    return ctx


def require_tenant_auth(
    *,
    allow_resident: bool = False,
    require_tenant: bool = True,
    allow_unauthenticated: bool = False,
    minimum_role: str | None = None,
    required_roles: Iterable[str] | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    roles = tuple(required_roles) if required_roles else ()

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            ctx = resolve_tenant_context(user)
            g.tenant = ctx

            if user is None:
                if allow_unauthenticated:
                    return fn(*args, **kwargs)
                raise Unauthorized("Unauthorized")

            if require_tenant and not ctx.has_tenant and ctx.role != "super_admin":
                raise ValidationError("Tenant context required. Access via organization URL.")

            if ctx.has_tenant and not ctx.is_member:
                raise Forbidden("Access denied. You are not a member of this organization.")

            if ctx.is_resident and not allow_resident:
                g.missing_permission = "faculty"
                raise Forbidden("Access denied. This resource requires faculty or above.")

            if minimum_role and not ctx.has_role_at_least(minimum_role):
                g.missing_permission = minimum_role
                raise Forbidden(f"Access denied. Requires at least {minimum_role} role.")

            if roles and ctx.role not in roles:
                g.missing_permission = ",".join(roles)
                raise Forbidden(f"Access denied. Requires one of: {', '.join(roles)}")

            return fn(*args, **kwargs)

        return wrapped

    return decorator


def faculty_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    return require_tenant_auth(minimum_role="faculty")(fn)


def leadership_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    return require_tenant_auth(required_roles=PROGRAM_LEADERSHIP_ROLES)(fn)


def admin_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    return require_tenant_auth(required_roles=ADMIN_ROLES, require_tenant=False)(fn)


def resident_access(fn: Callable[..., Any]) -> Callable[..., Any]:
    return require_tenant_auth(allow_resident=True, minimum_role="resident")(fn)
