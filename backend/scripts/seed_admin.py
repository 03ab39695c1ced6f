#!/usr/bin/env python
"""Idempotent bootstrap of the first Admin account.

Usage:
    python backend/scripts/seed_admin.py             # create admin if missing
    python backend/scripts/seed_admin.py --dry-run   # run logic then rollback (no DB changes)
    python backend/scripts/seed_admin.py --create-schema

Credentials come from SEED_ADMIN_NAME, SEED_ADMIN_EMAIL and SEED_ADMIN_PASSWORD.
"""
from __future__ import annotations
import os, sys, argparse, textwrap
from sqlalchemy import select

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from tailorshop import create_app, get_db  # type: ignore
from tailorshop.models.user import Base, User
import tailorshop.models.customer  # noqa: F401
import tailorshop.models.order  # noqa: F401
import tailorshop.models.audit  # noqa: F401
from tailorshop.services.accounts import generate_username
from tailorshop.services.audit import add_audit


def ensure_initial_admin(session):
    """Return the admin user and whether it was created."""
    existing = session.execute(select(User).where(User.role==User.ROLE_ADMIN).order_by(User.id.asc())).scalars().first()
    if existing:
        return existing, False
    name = os.getenv('SEED_ADMIN_NAME', 'Admin')
    email = os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com')
    user = User(name=name, username=generate_username(session, name), email=email, role=User.ROLE_ADMIN, shops=[])
    user.set_password(os.getenv('SEED_ADMIN_PASSWORD', 'ChangeMe123!'))
    session.add(user)
    session.flush()
    add_audit(session, None, 'USER.CREATE', 'User', user.id, {'role': User.ROLE_ADMIN, 'source': 'seed'})
    return user, True


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Create the initial Admin account",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_admin.py\n  dry run: seed_admin.py --dry-run\n""")
    )
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--create-schema', action='store_true', help='Create missing tables first (prefer alembic upgrade head)')
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    app = create_app()
    with app.app_context():
        session = get_db()
        if args.create_schema:
            Base.metadata.create_all(session.get_bind())
        user, created = ensure_initial_admin(session)
        if args.dry_run:
            session.rollback()
            print(f"[DRY-RUN] (rolled back) Admin would be {'created' if created else 'kept'}: {user.username}")
        else:
            session.commit()
            if created:
                print(f"[INFO] Created initial admin {user.username} with temporary password.")
            else:
                print(f"[INFO] Admin already present: {user.username}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
