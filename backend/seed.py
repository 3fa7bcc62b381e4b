from __future__ import annotations

import os
from getpass import getpass

from donorvault import create_app
from donorvault.bootstrap import bootstrap_admin, bootstrap_defaults
from donorvault.extensions import db


def main() -> None:
    app = create_app()

    with app.app_context():
        db.create_all()
        bootstrap_defaults(commit=True)

        email = os.getenv("ADMIN_EMAIL") or input("Admin email: ")
        password = os.getenv("ADMIN_PASSWORD")
        if not password:
            password = getpass("Admin password: ")

        user, created = bootstrap_admin(email, password, force=os.getenv("ADMIN_FORCE", "").lower() in {"1", "true", "yes"})

        print(f"{'Created' if created else 'Updated'} admin user: {user.email}")


if __name__ == "__main__":
    main()
