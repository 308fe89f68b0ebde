"""categories, transactions and ai categorization suggestions

Revision ID: 001_ai_categorization
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_ai_categorization'
down_revision = None
branch_labels = None
depends_on = None

owner_type = postgresql.ENUM('user', 'group', name='owner_type', create_type=False)
category_type = postgresql.ENUM('expense', 'income', name='category_type', create_type=False)


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE owner_type AS ENUM ('user', 'group');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE category_type AS ENUM ('expense', 'income');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    # Categories owned by a user or a group
    op.create_table(
        'categories',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(50), nullable=False, comment='Category display name'),
        sa.Column('color', sa.String(7), nullable=False, server_default='#6366F1', comment='Hex color for UI display'),
        sa.Column('icon', sa.String(50), nullable=False, server_default='tag', comment='Icon identifier'),
        sa.Column('owner_type', owner_type, nullable=False),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('type', category_type, nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('idx_categories_owner', 'categories', ['owner_type', 'owner_id'])
    op.create_index('idx_categories_name_owner', 'categories', ['name', 'owner_type', 'owner_id'], unique=True)

    # Transactions (category_id NULL = uncategorized)
    op.create_table(
        'transactions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('date', sa.Date, nullable=False),
        sa.Column('description', sa.String(500), nullable=False, comment='Merchant name or transaction description'),
        sa.Column('amount', sa.Numeric(15, 2), nullable=False, comment='Negative for expenses, positive for income'),
        sa.Column('type', category_type, nullable=False),
        sa.Column('category_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('categories.id', ondelete='SET NULL'), nullable=True),
        sa.Column('notes', sa.Text),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('idx_transactions_user_id', 'transactions', ['user_id'])
    op.create_index('idx_transactions_user_date', 'transactions', ['user_id', 'date'])
    op.create_index('idx_transactions_uncategorized', 'transactions', ['user_id'],
                    postgresql_where=sa.text('category_id IS NULL'))

    # AI suggestions awaiting user review
    op.create_table(
        'ai_categorization_suggestions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False, comment='Owner of the suggestion'),
        sa.Column('transaction_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('transactions.id', ondelete='CASCADE'), nullable=False,
                  comment='Primary transaction that triggered the suggestion'),
        sa.Column('suggested_category_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('categories.id', ondelete='SET NULL'), nullable=True,
                  comment='Existing category, NULL when proposing a new one'),
        sa.Column('suggested_category_new', postgresql.JSONB, nullable=True,
                  comment='New category details: {name, icon, color}'),
        sa.Column('match_type', sa.String(20), nullable=False, comment='contains, startsWith or exact'),
        sa.Column('match_keyword', sa.String(255), nullable=False, comment='Keyword for the auto-categorization rule'),
        sa.Column('affected_transaction_ids', postgresql.ARRAY(postgresql.UUID(as_uuid=True)),
                  comment='Other transactions matched by the rule'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('deleted_at', sa.TIMESTAMP(timezone=True), nullable=True, comment='Soft delete timestamp'),

        sa.CheckConstraint(
            "(suggested_category_id IS NOT NULL AND suggested_category_new IS NULL) OR "
            "(suggested_category_id IS NULL AND suggested_category_new IS NOT NULL)",
            name='chk_category_suggestion',
        ),
        sa.CheckConstraint("status IN ('pending', 'approved', 'rejected', 'skipped')", name='chk_status'),
        sa.CheckConstraint("match_type IN ('contains', 'startsWith', 'exact')", name='chk_match_type'),
    )
    op.create_index('idx_ai_suggestions_user_status', 'ai_categorization_suggestions', ['user_id', 'status'],
                    postgresql_where=sa.text('deleted_at IS NULL'))
    op.create_index('idx_ai_suggestions_transaction_id', 'ai_categorization_suggestions', ['transaction_id'])


def downgrade() -> None:
    op.drop_table('ai_categorization_suggestions')
    op.drop_table('transactions')
    op.drop_table('categories')
    op.execute("DROP TYPE IF EXISTS category_type")
    op.execute("DROP TYPE IF EXISTS owner_type")
