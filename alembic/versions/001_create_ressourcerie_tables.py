"""001: create ressourcerie tables

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE OR REPLACE FUNCTION fn_touch_updated_at()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = NOW();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TABLE associations (
            id              BIGSERIAL       PRIMARY KEY,
            name            VARCHAR(64)     NOT NULL,
            representer_id  BIGINT,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_associations_name_not_blank CHECK (btrim(name) <> '')
        );
    """)
    op.execute("""
        CREATE TABLE members (
            id              BIGSERIAL       PRIMARY KEY,
            name            VARCHAR(64)     NOT NULL,
            association_id  BIGINT          REFERENCES associations (id),
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_members_name_not_blank CHECK (btrim(name) <> '')
        );
    """)
    # associations <-> members reference each other; close the cycle afterwards.
    op.execute("""
        ALTER TABLE associations
            ADD CONSTRAINT fk_associations_representer
            FOREIGN KEY (representer_id) REFERENCES members (id);
    """)
    op.execute("""
        CREATE TABLE categories (
            id              BIGSERIAL       PRIMARY KEY,
            name            TEXT            NOT NULL,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_categories_name_not_blank CHECK (btrim(name) <> '')
        );
    """)
    op.execute("""
        CREATE TABLE offers (
            id              BIGSERIAL       PRIMARY KEY,
            association_id  BIGINT          NOT NULL REFERENCES associations (id),
            name            VARCHAR(64)     NOT NULL,
            description     TEXT            NOT NULL DEFAULT '',
            price           NUMERIC(12, 2)  NOT NULL,
            status          VARCHAR(20)     NOT NULL DEFAULT 'OPEN',
            created_at      TIMESTAMPTZ     NOT NULL,
            closed_at       TIMESTAMPTZ,
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_offers_price_gte_0 CHECK (price >= 0),
            CONSTRAINT ck_offers_status CHECK (status IN ('OPEN', 'CLOSED', 'ARCHIVED')),
            CONSTRAINT ck_offers_closed_at CHECK (
                (status = 'OPEN' AND closed_at IS NULL)
                OR (status <> 'OPEN' AND closed_at IS NOT NULL)
            )
        );
    """)
    op.execute("""
        CREATE TABLE offers_categories (
            offer_id        BIGINT          NOT NULL REFERENCES offers (id),
            category_id     BIGINT          NOT NULL REFERENCES categories (id),
            PRIMARY KEY (offer_id, category_id)
        );
    """)
    op.execute("""
        CREATE TABLE demands (
            id              BIGSERIAL       PRIMARY KEY,
            offer_id        BIGINT          NOT NULL REFERENCES offers (id),
            demander_id     BIGINT          NOT NULL REFERENCES members (id),
            created_at      TIMESTAMPTZ     NOT NULL,
            status          VARCHAR(20)     NOT NULL DEFAULT 'PENDING',
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_demands_status CHECK (
                status IN ('PENDING', 'APPROVED', 'REJECTED', 'CANCELLED')
            )
        );
    """)
    op.execute("CREATE INDEX idx_offers_association ON offers (association_id);")
    op.execute("CREATE INDEX idx_offers_categories_category ON offers_categories (category_id);")
    op.execute("CREATE INDEX idx_demands_offer_queue ON demands (offer_id, created_at, id);")
    # At most one PENDING demand per (offer, demander), enforced under concurrency.
    op.execute("""
        CREATE UNIQUE INDEX uq_demands_pending
            ON demands (offer_id, demander_id)
            WHERE status = 'PENDING';
    """)
    for table in ("associations", "members", "offers", "demands"):
        op.execute(f"""
            CREATE TRIGGER trg_{table}_updated_at
                BEFORE UPDATE ON {table}
                FOR EACH ROW EXECUTE FUNCTION fn_touch_updated_at();
        """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS demands CASCADE;")
    op.execute("DROP TABLE IF EXISTS offers_categories CASCADE;")
    op.execute("DROP TABLE IF EXISTS offers CASCADE;")
    op.execute("DROP TABLE IF EXISTS categories CASCADE;")
    op.execute("ALTER TABLE IF EXISTS associations DROP CONSTRAINT IF EXISTS fk_associations_representer;")
    op.execute("DROP TABLE IF EXISTS members CASCADE;")
    op.execute("DROP TABLE IF EXISTS associations CASCADE;")
    op.execute("DROP FUNCTION IF EXISTS fn_touch_updated_at();")
