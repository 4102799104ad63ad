"""
Permission vocabulary and default roles.

Permissions are a shared, fixed vocabulary; which of them a role grants is
decided per organization.
"""


PERMISSION_CATALOG: list[tuple[str, str]] = [
    # User management
    ("users.view", "View Users"),
    ("users.create", "Create Users"),
    ("users.manage", "Manage Users"),
    ("users.delete", "Delete Users"),
    # Organization management
    ("organizations.update", "Update Organization"),
    ("organizations.delete", "Delete Organization"),
    # HR
    ("hr.employees.view", "View Employees"),
    ("hr.employees.create", "Create Employees"),
    ("hr.employees.edit", "Edit Employees"),
    ("hr.employees.delete", "Delete Employees"),
    ("hr.leave.view", "View Leave Requests"),
    ("hr.leave.create", "Create Leave Requests"),
    ("hr.leave.edit", "Edit Leave Requests"),
    ("hr.leave.approve", "Approve Leave Requests"),
    ("hr.leave.manage", "Manage Leave Types"),
    ("hr.attendance.view", "View Attendance"),
    ("hr.attendance.create", "Record Attendance"),
    ("hr.attendance.edit", "Edit Attendance"),
    ("hr.attendance.manage", "Manage Attendance"),
    ("hr.payroll.view", "View Payroll"),
    ("hr.payroll.create", "Create Payroll Records"),
    ("hr.payroll.edit", "Edit Payroll Records"),
    ("hr.payroll.approve", "Approve Payroll"),
    ("hr.recruitment.view", "View Recruitment"),
    ("hr.recruitment.create", "Create Job Postings"),
    ("hr.recruitment.edit", "Edit Job Postings"),
    ("hr.recruitment.manage", "Manage Applications"),
    ("hr.performance.view", "View Performance Reviews"),
    ("hr.performance.create", "Create Performance Reviews"),
    ("hr.performance.edit", "Edit Performance Reviews"),
    ("hr.performance.manage", "Manage Goals"),
    # Ticketing
    ("ticketing.tickets.view", "View Tickets"),
    ("ticketing.tickets.create", "Create Tickets"),
    ("ticketing.tickets.edit", "Edit Tickets"),
    ("ticketing.tickets.delete", "Delete Tickets"),
    # Billing
    ("billing.subscriptions.view", "View Subscriptions"),
    ("billing.subscriptions.manage", "Manage Subscriptions"),
    # Marketplace
    ("marketplace.products.view", "View Products"),
    ("marketplace.products.create", "Create Products"),
    ("marketplace.products.edit", "Edit Products"),
    ("marketplace.products.delete", "Delete Products"),
    ("marketplace.orders.view", "View Orders"),
    ("marketplace.orders.create", "Create Orders"),
    ("marketplace.orders.edit", "Edit Orders"),
    # Inventory
    ("inventory.items.view", "View Inventory Items"),
    ("inventory.items.create", "Create Inventory Items"),
    ("inventory.items.edit", "Edit Inventory Items"),
    ("inventory.items.delete", "Delete Inventory Items"),
    ("inventory.assignments.view", "View Assignments"),
    ("inventory.assignments.create", "Create Assignments"),
    ("inventory.assignments.approve", "Approve Assignments"),
    # PMO
    ("pmo.projects.view", "View Projects"),
    ("pmo.projects.create", "Create Projects"),
    ("pmo.projects.edit", "Edit Projects"),
    ("pmo.projects.delete", "Delete Projects"),
    # Documents
    ("documents.view", "View Documents"),
    ("documents.create", "Create Documents"),
    ("documents.edit", "Edit Documents"),
    ("documents.delete", "Delete Documents"),
    ("documents.share", "Share Documents"),
    # Sales
    ("sales.leads.view", "View Leads"),
    ("sales.leads.create", "Create Leads"),
    ("sales.leads.edit", "Edit Leads"),
    ("sales.leads.delete", "Delete Leads"),
    # Membership
    ("membership.members.view", "View Members"),
    ("membership.members.create", "Create Members"),
    ("membership.members.edit", "Edit Members"),
    ("membership.members.delete", "Delete Members"),
]


OWNER_ROLE = "owner"
ADMIN_ROLE = "admin"
MEMBER_ROLE = "member"

# key -> (name, description)
DEFAULT_ROLES: dict[str, tuple[str, str]] = {
    OWNER_ROLE: ("Owner", "Full access to the organization"),
    ADMIN_ROLE: ("Admin", "Administers the organization except its subscription"),
    MEMBER_ROLE: ("Member", "Baseline membership with no extra capabilities"),
}

# Permissions the admin role never receives by default
ADMIN_EXCLUDED_PERMISSIONS = frozenset({"billing.subscriptions.manage"})


def default_grants(role_key: str, permission_keys: set[str]) -> set[str]:
    """Keys a freshly created default role receives out of the existing vocabulary."""
    if role_key == OWNER_ROLE:
        return set(permission_keys)
    if role_key == ADMIN_ROLE:
        return set(permission_keys) - ADMIN_EXCLUDED_PERMISSIONS
    return set()
