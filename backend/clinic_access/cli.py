"""Management CLI for the permission catalog.

Usage:
    python -m clinic_access.cli roles                        # Role × permission matrix
    python -m clinic_access.cli check ROLE MODULE ACTION     # Evaluate factory defaults
"""

import sys

from clinic_access.auth.permissions import (
    CATALOG,
    ROLE_DEFAULTS,
    ROLE_LABELS,
    Role,
)
from clinic_access.auth.resolver import check_permission


def print_roles():
    """Print which factory default holds which permission."""
    roles = list(Role)
    print(" " * 24 + " ".join(r.value[:5].ljust(5) for r in roles))
    for module, actions in CATALOG.items():
        for action in actions:
            cells = [
                ("x" if check_permission(ROLE_DEFAULTS[r], r, module, action) else ".").ljust(5)
                for r in roles
            ]
            print(f"{module.value}:{action.value}".ljust(24) + " ".join(cells))

    print()
    for r in roles:
        print(f"  {r.value.ljust(13)} {ROLE_LABELS[r]} ({len(ROLE_DEFAULTS[r])} permissions)")


def check(role: str, module: str, action: str) -> bool:
    try:
        role = Role(role.upper())
    except ValueError:
        print(f"Unknown role: {role}")
        return False

    allowed = check_permission(ROLE_DEFAULTS[role], role, module, action)
    print(f"  {role.value} {module}:{action} → {'ALLOWED' if allowed else 'DENIED'}")
    return allowed


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "roles":
        print_roles()
    elif cmd == "check" and len(sys.argv) == 5:
        sys.exit(0 if check(*sys.argv[2:5]) else 1)
    else:
        print("Usage: python -m clinic_access.cli [roles | check ROLE MODULE ACTION]")
        sys.exit(2)
