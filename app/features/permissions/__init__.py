"""
Permission management feature module.

Implements per-user grants over a catalog of named permissions. Grants are
checked by name; there are no roles or groups.
"""
