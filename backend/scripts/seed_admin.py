#!/usr/bin/env python3
"""
Admin User Seed Script
Creates (or promotes) an administrator account for CME Tracker.

Usage:
    python -m scripts.seed_admin <username> <name> <password>

Example:
    python -m scripts.seed_admin admin "Quản trị viên" securepassword
"""
import sys
import os
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from cme_tracker.database import SessionLocal, init_db
from cme_tracker.models.db_models import UserDB, UserRole, UserStatus
from cme_tracker.auth import hash_password
from cme_tracker.services.accounts import MIN_PASSWORD_LENGTH


def create_admin_user(username: str, name: str, password: str) -> bool:
    """Create an admin user, or promote and reactivate an existing one."""
    # Ensure tables exist
    init_db()

    db: Session = SessionLocal()
    try:
        existing = db.query(UserDB).filter(UserDB.username == username).first()

        if existing:
            if existing.role == UserRole.ADMIN.value:
                print(f"User '{username}' is already an admin.")
                return True
            existing.role = UserRole.ADMIN.value
            existing.status = UserStatus.ACTIVE.value
            existing.failed_login_attempts = 0
            db.commit()
            print(f"Upgraded existing user '{username}' to admin role.")
            return True

        admin_user = UserDB(
            id=str(uuid4()),
            username=username,
            name=name,
            password_hash=hash_password(password),
            role=UserRole.ADMIN.value,
            status=UserStatus.ACTIVE.value,
            failed_login_attempts=0,
        )

        db.add(admin_user)
        db.commit()

        print("Admin user created successfully!")
        print(f"  Username: {username}")
        print(f"  Name: {name}")
        print("  Role: admin")
        return True

    except Exception as e:
        print(f"Error creating admin user: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    if len(sys.argv) != 4:
        print(__doc__)
        sys.exit(1)

    username = sys.argv[1].strip()
    name = sys.argv[2].strip()
    password = sys.argv[3]

    if not username or not name:
        print("Error: Username and name are required.")
        sys.exit(1)

    if len(password) < MIN_PASSWORD_LENGTH:
        print(f"Error: Password must be at least {MIN_PASSWORD_LENGTH} characters.")
        sys.exit(1)

    success = create_admin_user(username, name, password)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
