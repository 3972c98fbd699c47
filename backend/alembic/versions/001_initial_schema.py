"""initial_schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

Creates the full portal schema:
- organisation hierarchy: companies, projects, precincts, stages, lots
- stage items: permits, approvals, invoices, lot_subgroups
- auth: users, sessions, roles, user_access, password_resets, invitations
- documents, custom_fields, user_preferences, activity_log
- land_budget_items, product_pricing

All DDL is guarded by existence checks, so the migration also runs after
Base.metadata.create_all() has already created the tables.
"""
import logging
from alembic import op
import sqlalchemy as sa
from sqlalchemy import text

revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger("alembic.001")


def _table_exists(conn, table_name: str) -> bool:
    result = conn.execute(
        text(
            "SELECT EXISTS("
            "  SELECT 1 FROM information_schema.tables"
            "  WHERE table_name = :tname"
            ")"
        ),
        {"tname": table_name},
    )
    return bool(result.scalar())


def _id():
    return sa.Column('id', sa.Integer, primary_key=True, autoincrement=True)


def _fk(name: str, target: str, nullable: bool = False, ondelete: str = 'CASCADE'):
    return sa.Column(name, sa.Integer, sa.ForeignKey(target, ondelete=ondelete), nullable=nullable)


def _timestamps(updated: bool = True) -> list:
    cols = [sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)]
    if updated:
        cols.append(sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False))
    return cols


def _sort_order():
    return sa.Column('sort_order', sa.Integer, server_default='0')


# Creation order respects foreign keys; drop order is the reverse
TABLES = [
    ('companies', lambda: [
        _id(),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('abn', sa.Text),
        sa.Column('owners', sa.Text),
        sa.Column('created_by', sa.Integer),
        *_timestamps(),
    ]),
    ('projects', lambda: [
        _id(),
        _fk('company_id', 'companies.id'),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('description', sa.Text),
        _sort_order(),
        *_timestamps(),
    ]),
    ('precincts', lambda: [
        _id(),
        _fk('project_id', 'projects.id'),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('description', sa.Text),
        _sort_order(),
        *_timestamps(),
    ]),
    ('stages', lambda: [
        _id(),
        _fk('precinct_id', 'precincts.id'),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('registration_date', sa.DateTime(timezone=True)),
        sa.Column('registration_date_actual', sa.Integer, server_default='0'),
        sa.Column('settlement_date', sa.DateTime(timezone=True)),
        sa.Column('settlement_date_actual', sa.Integer, server_default='0'),
        _sort_order(),
        *_timestamps(),
    ]),
    ('permits', lambda: [
        _id(),
        _fk('stage_id', 'stages.id'),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('permit_number', sa.Text),
        sa.Column('status', sa.Text),
        _sort_order(),
        *_timestamps(),
    ]),
    ('approvals', lambda: [
        _id(),
        _fk('stage_id', 'stages.id'),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('approval_number', sa.Text),
        sa.Column('status', sa.Text),
        _sort_order(),
        *_timestamps(),
    ]),
    ('invoices', lambda: [
        _id(),
        _fk('stage_id', 'stages.id'),
        sa.Column('invoice_number', sa.Text, nullable=False),
        sa.Column('amount', sa.Numeric(10, 2)),
        sa.Column('status', sa.Text),
        _sort_order(),
        *_timestamps(),
    ]),
    ('lots', lambda: [
        _id(),
        _fk('stage_id', 'stages.id'),
        sa.Column('lot_number', sa.Text, nullable=False),
        sa.Column('address', sa.Text),
        sa.Column('area', sa.Numeric(10, 2)),
        sa.Column('frontage', sa.Numeric(10, 2)),
        sa.Column('depth', sa.Numeric(10, 2)),
        sa.Column('street_name', sa.Text),
        sa.Column('status', sa.Text),
        sa.Column('price', sa.Numeric(12, 2)),
        sa.Column('price_per_sqm', sa.Numeric(10, 2)),
        sa.Column('custom_data', sa.Text),
        _sort_order(),
        *_timestamps(),
        sa.Index('ix_lots_stage_id', 'stage_id'),
    ]),
    ('lot_subgroups', lambda: [
        _id(),
        _fk('lot_id', 'lots.id'),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('description', sa.Text),
        _sort_order(),
        *_timestamps(),
    ]),
    ('custom_fields', lambda: [
        _id(),
        sa.Column('entity_type', sa.Text, nullable=False),
        sa.Column('field_key', sa.Text, nullable=False),
        sa.Column('field_label', sa.Text, nullable=False),
        sa.Column('field_type', sa.Text, server_default='text'),
        sa.Column('is_active', sa.Integer, server_default='1'),
        _sort_order(),
        *_timestamps(updated=False),
    ]),
    ('documents', lambda: [
        _id(),
        sa.Column('entity_type', sa.Text, nullable=False),
        sa.Column('entity_id', sa.Integer, nullable=False),
        sa.Column('filename', sa.Text, nullable=False),
        sa.Column('original_name', sa.Text, nullable=False),
        sa.Column('mime_type', sa.Text, nullable=False),
        sa.Column('size', sa.Integer, nullable=False),
        sa.Column('document_type', sa.Text, server_default='other'),
        sa.Column('extracted_data', sa.Text),
        sa.Column('ai_processed', sa.DateTime(timezone=True)),
        *_timestamps(updated=False),
        sa.Index('ix_documents_entity', 'entity_type', 'entity_id'),
    ]),
    ('users', lambda: [
        _id(),
        sa.Column('email', sa.Text, nullable=False, unique=True),
        sa.Column('password_hash', sa.Text, nullable=False),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('is_master', sa.Integer, server_default='0'),
        sa.Column('is_active', sa.Integer, server_default='1'),
        sa.Column('theme', sa.Text, server_default='default'),
        sa.Column('last_login', sa.DateTime(timezone=True)),
        *_timestamps(),
    ]),
    ('sessions', lambda: [
        sa.Column('id', sa.String(64), primary_key=True),
        _fk('user_id', 'users.id'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(updated=False),
    ]),
    ('roles', lambda: [
        _id(),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('can_view', sa.Integer, server_default='1'),
        sa.Column('can_edit', sa.Integer, server_default='0'),
        sa.Column('can_delete', sa.Integer, server_default='0'),
        sa.Column('can_invite', sa.Integer, server_default='0'),
        sa.Column('can_manage_roles', sa.Integer, server_default='0'),
        *_timestamps(updated=False),
    ]),
    ('user_access', lambda: [
        _id(),
        _fk('user_id', 'users.id'),
        _fk('role_id', 'roles.id'),
        sa.Column('entity_type', sa.Text, nullable=False),
        sa.Column('entity_id', sa.Integer, nullable=False),
        sa.Column('granted_by', sa.Integer, sa.ForeignKey('users.id'), nullable=True),
        *_timestamps(updated=False),
        sa.Index('ix_user_access_user', 'user_id'),
    ]),
    ('password_resets', lambda: [
        _id(),
        _fk('user_id', 'users.id'),
        sa.Column('token', sa.Text, nullable=False, unique=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True)),
        *_timestamps(updated=False),
    ]),
    ('invitations', lambda: [
        _id(),
        sa.Column('email', sa.Text, nullable=False),
        sa.Column('token', sa.Text, nullable=False, unique=True),
        _fk('role_id', 'roles.id'),
        sa.Column('entity_type', sa.Text, nullable=False),
        sa.Column('entity_id', sa.Integer, nullable=False),
        _fk('invited_by', 'users.id'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('accepted_at', sa.DateTime(timezone=True)),
        *_timestamps(updated=False),
    ]),
    ('user_preferences', lambda: [
        _id(),
        sa.Column('entity_type', sa.Text, nullable=False),
        sa.Column('entity_id', sa.Integer, nullable=False),
        sa.Column('pref_key', sa.Text, nullable=False),
        sa.Column('pref_value', sa.Text, nullable=False),
        *_timestamps(),
    ]),
    ('activity_log', lambda: [
        _id(),
        _fk('user_id', 'users.id', nullable=True, ondelete='SET NULL'),
        sa.Column('action', sa.Text, nullable=False),
        sa.Column('entity_type', sa.Text, nullable=False),
        sa.Column('entity_id', sa.Integer),
        sa.Column('details', sa.Text),
        sa.Column('ip_address', sa.Text),
        *_timestamps(updated=False),
        sa.Index('ix_activity_log_created_at', 'created_at'),
    ]),
    ('land_budget_items', lambda: [
        _id(),
        _fk('precinct_id', 'precincts.id', nullable=True),
        _fk('stage_id', 'stages.id', nullable=True),
        sa.Column('category', sa.Text, nullable=False),
        sa.Column('subcategory', sa.Text),
        sa.Column('custom_name', sa.Text),
        sa.Column('area_ha', sa.Numeric(10, 4)),
        sa.Column('is_custom', sa.Integer, server_default='0'),
        _sort_order(),
        *_timestamps(),
    ]),
    ('product_pricing', lambda: [
        _id(),
        _fk('project_id', 'projects.id'),
        sa.Column('product_name', sa.Text, nullable=False),
        sa.Column('frontage', sa.Numeric(10, 2), nullable=False),
        sa.Column('depth', sa.Numeric(10, 2), nullable=False),
        sa.Column('base_area', sa.Numeric(10, 2), nullable=False),
        sa.Column('base_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('price_per_sqm', sa.Numeric(10, 2), nullable=False),
        sa.Column('balance_rate', sa.Numeric(5, 2), server_default='50'),
        _sort_order(),
        *_timestamps(),
    ]),
]


def upgrade() -> None:
    conn = op.get_bind()
    for name, columns in TABLES:
        if _table_exists(conn, name):
            logger.info(f"Table {name} already exists — skipping create")
            continue
        op.create_table(name, *columns())
        logger.info(f"Created table: {name}")


def downgrade() -> None:
    conn = op.get_bind()
    for name, _ in reversed(TABLES):
        if _table_exists(conn, name):
            op.drop_table(name)
            logger.info(f"Dropped table: {name}")
