"""
Promote a phone number to admin, creating the account if needed.

Usage:
  python tools/promote_user_admin.py <phone> [name]
"""
from __future__ import annotations

import sys

from app import app, db, User, RoleEnum
from errors import ValidationError
from otp import normalize_phone


def main() -> int:
    if len(sys.argv) < 2:
        print("Usage: python tools/promote_user_admin.py <phone> [name]")
        return 1

    try:
        phone = normalize_phone(sys.argv[1])
    except ValidationError as e:
        print(e.message)
        return 1
    name = sys.argv[2].strip() if len(sys.argv) > 2 else None

    with app.app_context():
        user = User.query.filter_by(phone=phone).first()
        if user is None:
            user = User(
                phone=phone,
                name=name or "SellX Admin",
                role=RoleEnum.admin,
                is_verified=True,
            )
            db.session.add(user)
            action = "created"
        else:
            user.role = RoleEnum.admin
            user.is_suspended = False
            if name:
                user.name = name
            action = "updated"

        db.session.commit()
        print(f"Admin user {action}: {phone}")
        print("Sign in with a one-time code sent to this number.")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
