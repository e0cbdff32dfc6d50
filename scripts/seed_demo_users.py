"""
Seed the local database with one demo user per role and a sample project.

Usage:
  python scripts/seed_demo_users.py

This script is idempotent: running it multiple times will upsert the same
records based on unique fields (email for users, name for projects).
"""

from datetime import datetime, timezone

from travelhub.db import SessionLocal, Base, engine
from travelhub.models.models import User, Project
from travelhub.auth.security import get_password_hash


DEMO_USERS = [
    # (email, name, role, department, designation)
    ("employee@example.com", "Erin Employee", "employee", "Programs", "Field Officer"),
    ("approver@example.com", "Alex Approver", "approver", "Programs", "Program Manager"),
    ("checker@example.com", "Casey Checker", "checker", "Finance", "Finance Officer"),
    ("admin@example.com", "Ada Admin", "admin", "Operations", "System Administrator"),
]

DEMO_PASSWORD = "TestUser123!"


def ensure_user(session, email: str, name: str, role: str, department: str, designation: str) -> User:
    user = session.query(User).filter(User.email == email).first()
    if user:
        user.name = name
        user.role = role
        user.department = department
        user.designation = designation
        # Keep an existing password
        if not user.password_hash:
            user.password_hash = get_password_hash(DEMO_PASSWORD)
        session.add(user)
        session.flush()
        return user
    user = User(
        email=email,
        name=name,
        role=role,
        department=department,
        designation=designation,
        password_hash=get_password_hash(DEMO_PASSWORD),
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )
    session.add(user)
    session.flush()
    return user


def ensure_project(session, name: str, description: str) -> Project:
    project = session.query(Project).filter(Project.name == name).first()
    if project:
        project.description = description
        session.add(project)
        session.flush()
        return project
    project = Project(name=name, description=description, active=True, created_at=datetime.now(timezone.utc))
    session.add(project)
    session.flush()
    return project


def main() -> None:
    # Ensure tables exist (safe for SQLite dev)
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        for email, name, role, department, designation in DEMO_USERS:
            ensure_user(session, email, name, role, department, designation)
        ensure_project(session, "General Operations", "Default project for travel and field costs.")
        session.commit()
        print("Seed completed:")
        for email, _, role, _, _ in DEMO_USERS:
            print(f"- {role}: {email} / {DEMO_PASSWORD}")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
