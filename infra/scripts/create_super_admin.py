from __future__ import annotations

import argparse
import getpass
import sys

from workdesk.infra.logging_config import configure_logging
from workdesk.services.identity_service import ConflictError, IdentityService


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create a platform-wide super_admin account.")
    parser.add_argument("email")
    parser.add_argument("--name", default=None)
    args = parser.parse_args(argv)

    configure_logging()
    password = getpass.getpass("password: ")
    if len(password) < 8:
        print("password must be at least 8 characters", file=sys.stderr)
        return 2
    try:
        user = IdentityService().create_super_admin(args.email, password, name=args.name)
    except ConflictError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print(user.id)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
