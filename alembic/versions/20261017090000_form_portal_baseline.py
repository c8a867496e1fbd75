"""form portal baseline

Revision ID: 20261017090000
Revises:
Create Date: 2026-10-17T09:00:00Z
"""

from alembic import op
import sqlalchemy as sa  # noqa: F401

# revision identifiers, used by Alembic.
revision = "20261017090000"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # app.db.models.__init__ imports every model file, so metadata is complete
    from app.db.base import Base
    import app.db.models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.create_all(bind=bind)


def downgrade() -> None:
    from app.db.base import Base
    import app.db.models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind)
