"""Role tables and access rules for branch staff and clients."""
from __future__ import annotations

SYSTEM_ADMIN = "systemAdmin"
OPERATIONAL_MANAGER = "operationalManager"
BRANCH_ADMIN = "branchAdmin"
BRANCH_MANAGER = "branchManager"
RECEPTIONIST = "receptionist"
INVENTORY_CONTROLLER = "inventoryController"
STYLIST = "stylist"
CLIENT = "client"

ROLES = (
    SYSTEM_ADMIN,
    OPERATIONAL_MANAGER,
    BRANCH_ADMIN,
    BRANCH_MANAGER,
    RECEPTIONIST,
    INVENTORY_CONTROLLER,
    STYLIST,
    CLIENT,
)

ROLE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    SYSTEM_ADMIN: (
        "manageUsers",
        "manageBranches",
        "viewReports",
        "manageRoles",
        "viewAllData",
        "systemSettings",
    ),
    OPERATIONAL_MANAGER: ("viewReports", "viewAllBranches", "viewAnalytics", "managePromotions"),
    BRANCH_ADMIN: (
        "manageStaff",
        "viewReports",
        "manageAppointments",
        "manageInventory",
        "manageClients",
        "branchSettings",
    ),
    BRANCH_MANAGER: (
        "viewReports",
        "manageAppointments",
        "manageStaff",
        "viewInventory",
        "manageClients",
    ),
    RECEPTIONIST: ("manageAppointments", "createBilling", "manageClients", "viewSchedule"),
    INVENTORY_CONTROLLER: ("manageInventory", "viewReports", "manageSuppliers", "viewAppointments"),
    STYLIST: ("viewAppointments", "updateServiceStatus", "viewSchedule", "manageProfile"),
    CLIENT: ("bookAppointments", "viewHistory", "manageProfile", "viewServices"),
}

ROLE_HIERARCHY: dict[str, int] = {
    SYSTEM_ADMIN: 8,
    OPERATIONAL_MANAGER: 7,
    BRANCH_ADMIN: 6,
    BRANCH_MANAGER: 5,
    RECEPTIONIST: 4,
    INVENTORY_CONTROLLER: 4,
    STYLIST: 3,
    CLIENT: 2,
}

ROLE_SWITCHING_PERMISSIONS: dict[str, tuple[str, ...]] = {
    SYSTEM_ADMIN: ROLES,
    OPERATIONAL_MANAGER: (BRANCH_ADMIN, BRANCH_MANAGER, RECEPTIONIST, INVENTORY_CONTROLLER, STYLIST),
    BRANCH_ADMIN: (BRANCH_MANAGER, RECEPTIONIST, INVENTORY_CONTROLLER, STYLIST),
    BRANCH_MANAGER: (RECEPTIONIST, INVENTORY_CONTROLLER, STYLIST),
    RECEPTIONIST: (STYLIST,),
    INVENTORY_CONTROLLER: (STYLIST,),
    STYLIST: (),
    CLIENT: (),
}

ROLE_DISPLAY_NAMES: dict[str, str] = {
    SYSTEM_ADMIN: "System Administrator",
    OPERATIONAL_MANAGER: "Operational Manager",
    BRANCH_ADMIN: "Branch Administrator",
    BRANCH_MANAGER: "Branch Manager",
    RECEPTIONIST: "Receptionist",
    INVENTORY_CONTROLLER: "Inventory Controller",
    STYLIST: "Stylist",
    CLIENT: "Client",
}

# Roles that see every branch and every appointment
GLOBAL_ROLES = (SYSTEM_ADMIN, OPERATIONAL_MANAGER)
BRANCH_STAFF_ROLES = (BRANCH_ADMIN, BRANCH_MANAGER, RECEPTIONIST, INVENTORY_CONTROLLER, STYLIST)
MANAGEMENT_ROLES = (SYSTEM_ADMIN, OPERATIONAL_MANAGER, BRANCH_ADMIN, BRANCH_MANAGER)
FRONT_DESK_ROLES = (SYSTEM_ADMIN, OPERATIONAL_MANAGER, BRANCH_ADMIN, BRANCH_MANAGER, RECEPTIONIST)


def is_valid_role(role) -> bool:
    return role in ROLE_HIERARCHY


def has_permission(role, permission: str) -> bool:
    return permission in ROLE_PERMISSIONS.get(role, ())


def has_role_access(role, target_role) -> bool:
    """True when ``role`` sits at or above ``target_role`` in the hierarchy."""
    return ROLE_HIERARCHY.get(role, 0) >= ROLE_HIERARCHY.get(target_role, 0)


def can_manage_user(role, target_role) -> bool:
    return has_role_access(role, target_role)


def role_display_name(role) -> str:
    return ROLE_DISPLAY_NAMES.get(role, role)


def can_switch_to_role(role, target_role) -> bool:
    return target_role in ROLE_SWITCHING_PERMISSIONS.get(role, ())


def available_roles(role) -> list[str]:
    return list(ROLE_SWITCHING_PERMISSIONS.get(role, ()))


def can_create_appointment(role) -> bool:
    return role in FRONT_DESK_ROLES


def can_book_appointment(role) -> bool:
    return role == CLIENT


def can_complete_appointment(role) -> bool:
    return role in (SYSTEM_ADMIN, OPERATIONAL_MANAGER, BRANCH_ADMIN, BRANCH_MANAGER, STYLIST)


def can_view_appointment(role, appointment, user_id) -> bool:
    if role in FRONT_DESK_ROLES:
        return True
    if role == STYLIST:
        return appointment.stylist_id == user_id
    if role == CLIENT:
        return appointment.client_id == user_id
    return False


def can_update_appointment(role, appointment, user_id) -> bool:
    # Operational managers have read-only access to appointments
    if role == OPERATIONAL_MANAGER:
        return False
    if role in (SYSTEM_ADMIN, BRANCH_ADMIN, BRANCH_MANAGER, RECEPTIONIST):
        return True
    if role == STYLIST:
        return appointment.stylist_id == user_id
    if role == CLIENT:
        return appointment.client_id == user_id
    return False


def can_view_branch(role, branch, user_id) -> bool:
    if role in GLOBAL_ROLES:
        return True
    if role == BRANCH_ADMIN:
        return branch.branch_admin_id == user_id
    if role == BRANCH_MANAGER:
        return branch.manager_id == user_id
    return False


def can_manage_branch(role) -> bool:
    return role == SYSTEM_ADMIN


def can_access_branch_data(user, branch_id) -> bool:
    """Staff operate on their own branch, global roles on any branch."""
    if user is None:
        return False
    if user.role in GLOBAL_ROLES:
        return True
    if user.role in BRANCH_STAFF_ROLES:
        return user.branch_id is not None and user.branch_id == branch_id
    return False


def can_manage_leave(role) -> bool:
    return role in MANAGEMENT_ROLES


def can_manage_promotions(role) -> bool:
    return role in MANAGEMENT_ROLES


def can_manage_inventory(role) -> bool:
    return role in (SYSTEM_ADMIN, BRANCH_ADMIN, BRANCH_MANAGER, INVENTORY_CONTROLLER)


def can_bill(role) -> bool:
    return has_permission(role, "createBilling") or role in (SYSTEM_ADMIN, BRANCH_ADMIN, BRANCH_MANAGER)


def can_view_reports(role) -> bool:
    return has_permission(role, "viewReports") or role == OPERATIONAL_MANAGER
