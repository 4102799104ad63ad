"""
Permission management feature module.

Organization-scoped role-based access control: roles belong to one
organization, permissions are a shared vocabulary, and users receive
permissions only through the roles of their active membership.
"""
