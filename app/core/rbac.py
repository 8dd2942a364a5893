"""
Admin portal access definitions.

Staff accounts are either platform admins, who can open every module, or
employees, who can only open the modules listed in their permissions.
"""

from enum import Enum
from typing import Any, Dict, Iterable, Set


class StaffRole(str, Enum):
    ADMIN = "admin"  # Platform administrator (all modules)
    EMPLOYEE = "employee"  # Limited to granted modules
    CUSTOMER = "customer"  # Customer portal only, no admin modules


class AdminModule(str, Enum):
    """Modules of the admin portal that can be granted to employees."""
    DASHBOARD = "dashboard"
    QUOTES = "quotes"
    LOADS = "loads"
    CUSTOMERS = "customers"
    ANALYTICS = "analytics"
    SYNC = "sync"

    # Platform admin only
    USERS = "users"
    ORGANIZATIONS = "organizations"
    SETTINGS = "settings"
    EMPLOYEES = "employees"


EMPLOYEE_MODULES: Set[AdminModule] = {
    AdminModule.DASHBOARD,
    AdminModule.QUOTES,
    AdminModule.LOADS,
    AdminModule.CUSTOMERS,
    AdminModule.ANALYTICS,
    AdminModule.SYNC,
}

ALL_ADMIN_MODULES: Set[AdminModule] = set(AdminModule)


def _normalize_modules(raw: Iterable[Any]) -> Set[AdminModule]:
    modules: Set[AdminModule] = set()
    for item in raw or []:
        try:
            modules.add(AdminModule(str(item).lower()))
        except ValueError:
            continue
    return modules


def get_granted_modules(claims: Dict[str, Any]) -> Set[AdminModule]:
    """Resolve the modules granted by a verified token's claims.

    The identity provider stores staff data under ``app_metadata``:
    ``{"role": "admin" | "employee", "modules": [...], "is_active": bool}``.
    """
    metadata = claims.get("app_metadata") or {}
    role = str(metadata.get("role") or "").lower()

    if metadata.get("is_active") is False:
        return set()
    if role == StaffRole.ADMIN.value:
        return set(ALL_ADMIN_MODULES)
    if role == StaffRole.EMPLOYEE.value:
        return _normalize_modules(metadata.get("modules", [])) & EMPLOYEE_MODULES
    return set()


def has_module_access(claims: Dict[str, Any], module: AdminModule | str) -> bool:
    try:
        target = AdminModule(module)
    except ValueError:
        return False
    return target in get_granted_modules(claims)
