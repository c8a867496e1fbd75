from __future__ import annotations

import os
import time
import logging
import subprocess
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import OperationalError

from app.core.config import settings

logger = logging.getLogger("form_portal.migrate")


def wait_for_db(engine, timeout_s: int = 60) -> None:
    """Wait until the database is accepting connections."""
    start = time.time()
    delay = 1.0

    while True:
        try:
            with engine.begin() as conn:
                conn.execute(text("SELECT 1"))
            return
        except OperationalError:
            if time.time() - start > timeout_s:
                raise
            logger.info("Database not ready, retrying in %.1fs", delay)
            time.sleep(delay)
            delay = min(delay * 1.5, 5.0)


def run(cmd: list[str]) -> int:
    p = subprocess.run(cmd, check=False)
    return p.returncode


def main() -> int:
    logging.basicConfig(level=logging.INFO)
    dsn = os.getenv("DATABASE_DSN") or settings.DATABASE_DSN
    engine = create_engine(dsn, future=True, pool_pre_ping=True)

    # Wait for DB readiness (important in docker-compose)
    wait_for_db(engine, timeout_s=int(os.getenv("DB_WAIT_TIMEOUT", "90")))

    tables = set(inspect(engine).get_table_names())

    # Run alembic
    if "alembic_version" not in tables and "form_assignments" in tables:
        # Existing schema without alembic tracking: stamp head
        rc = run(["alembic", "stamp", "head"])
    else:
        rc = run(["alembic", "upgrade", "head"])
    if rc != 0:
        # Don't stamp on failure; fail fast so schema doesn't drift from alembic_version.
        return rc

    # Seed default admin once (idempotent)
    from sqlalchemy.orm import Session
    from app.db.session import SessionLocal
    from app.db.models.user import User, Role
    from app.core.security import hash_password

    if settings.AUTO_CREATE_ADMIN:
        db: Session = SessionLocal()
        try:
            email = settings.DEFAULT_ADMIN_EMAIL.strip().lower()
            exists = db.query(User).filter(User.email == email).first()
            if not exists:
                admin = User(
                    full_name=settings.DEFAULT_ADMIN_FULL_NAME,
                    email=email,
                    password_hash=hash_password(settings.DEFAULT_ADMIN_PASSWORD),
                    role=Role.SUPERADMIN,
                    lab_id=None,
                )
                db.add(admin)
                db.commit()
                logger.info("Created default admin %s", email)
        finally:
            db.close()
    # Seed sample dataset (idempotent)
    if settings.AUTO_SEED_SAMPLE:
        from app.scripts.seed_sample import seed_sample

        db2: Session = SessionLocal()
        try:
            seed_sample(db2)
            db2.commit()
        finally:
            db2.close()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
