"""initial schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
        )
    return columns


def _version() -> sa.Column:
    return sa.Column("version", sa.Integer(), nullable=False, server_default="1")


INDEXES: list[tuple[str, str, list[str], bool]] = [
    ("ix_organizations_slug", "organizations", ["slug"], True),
    ("ix_users_username", "users", ["username"], True),
    ("ix_users_email", "users", ["email"], True),
    ("ix_users_role_active", "users", ["role", "is_active"], False),
    ("ix_user_organizations_user_id", "user_organizations", ["user_id"], False),
    ("ix_user_organizations_organization_id", "user_organizations", ["organization_id"], False),
    ("ux_user_organizations_user_org", "user_organizations", ["user_id", "organization_id"], True),
    ("ix_user_organizations_org_active", "user_organizations", ["organization_id", "is_active"], False),
    ("ix_tasks_organization_id", "tasks", ["organization_id"], False),
    ("ix_tasks_assigned_to", "tasks", ["assigned_to"], False),
    ("ix_tasks_created_by", "tasks", ["created_by"], False),
    ("ix_tasks_parent_task_id", "tasks", ["parent_task_id"], False),
    ("ix_tasks_org_status_created_at", "tasks", ["organization_id", "status", "created_at"], False),
    ("ix_tasks_org_assigned_to", "tasks", ["organization_id", "assigned_to"], False),
    ("ix_task_comments_organization_id", "task_comments", ["organization_id"], False),
    ("ix_task_comments_task_id", "task_comments", ["task_id"], False),
    ("ix_task_comments_user_id", "task_comments", ["user_id"], False),
    ("ix_customers_organization_id", "customers", ["organization_id"], False),
    ("ix_customers_assigned_representative", "customers", ["assigned_representative"], False),
    ("ux_customers_org_code", "customers", ["organization_id", "customer_code"], True),
    ("ix_customers_org_email", "customers", ["organization_id", "email"], False),
    ("ix_customers_org_name_created_at", "customers", ["organization_id", "name", "created_at"], False),
    ("ix_products_organization_id", "products", ["organization_id"], False),
    ("ux_products_org_sku", "products", ["organization_id", "sku"], True),
    ("ix_inventory_organization_id", "inventory", ["organization_id"], False),
    ("ix_inventory_product_id", "inventory", ["product_id"], False),
    ("ux_inventory_product_location", "inventory", ["product_id", "location"], True),
    ("ix_orders_organization_id", "orders", ["organization_id"], False),
    ("ix_orders_customer_id", "orders", ["customer_id"], False),
    ("ix_orders_assigned_to", "orders", ["assigned_to"], False),
    ("ix_orders_created_by", "orders", ["created_by"], False),
    ("ux_orders_org_number", "orders", ["organization_id", "order_number"], True),
    ("ix_orders_org_status_created_at", "orders", ["organization_id", "order_status", "created_at"], False),
    ("ix_order_items_order_id", "order_items", ["order_id"], False),
    ("ix_order_items_product_id", "order_items", ["product_id"], False),
    ("ix_sequences_organization_id", "sequences", ["organization_id"], False),
    ("ux_sequences_org_name", "sequences", ["organization_id", "name"], True),
]


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "organizations"):
        op.create_table(
            "organizations",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("slug", sa.String(length=120), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("settings", sa.JSON(), nullable=False),
            _version(),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("username", sa.String(length=50), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("first_name", sa.String(length=50), nullable=False),
            sa.Column("last_name", sa.String(length=50), nullable=False),
            sa.Column("phone", sa.String(length=40), nullable=True),
            sa.Column("role", sa.String(length=30), nullable=False, server_default="agent"),
            sa.Column("department", sa.String(length=100), nullable=True),
            sa.Column("position", sa.String(length=100), nullable=True),
            sa.Column("timezone", sa.String(length=60), nullable=False, server_default="UTC"),
            sa.Column("language", sa.String(length=10), nullable=False, server_default="en"),
            sa.Column("preferences", sa.JSON(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("login_attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
            _version(),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "user_organizations"):
        op.create_table(
            "user_organizations",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("role", sa.String(length=30), nullable=False, server_default="agent"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(updated=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "tasks"):
        op.create_table(
            "tasks",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="medium"),
            sa.Column("assigned_to", sa.String(length=36), nullable=True),
            sa.Column("created_by", sa.String(length=36), nullable=False),
            sa.Column("parent_task_id", sa.String(length=36), nullable=True),
            sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("estimated_hours", sa.Numeric(8, 2), nullable=True),
            sa.Column("actual_hours", sa.Numeric(8, 2), nullable=True),
            sa.Column("tags", sa.JSON(), nullable=False),
            sa.Column("checklist", sa.JSON(), nullable=False),
            sa.Column("metadata", sa.JSON(), nullable=False),
            _version(),
            *_timestamps(),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
            sa.ForeignKeyConstraint(["assigned_to"], ["users.id"]),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
            sa.ForeignKeyConstraint(["parent_task_id"], ["tasks.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "task_comments"):
        op.create_table(
            "task_comments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("task_id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"]),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "customers"):
        op.create_table(
            "customers",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("customer_code", sa.String(length=20), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("phone", sa.String(length=40), nullable=True),
            sa.Column("company_name", sa.String(length=255), nullable=True),
            sa.Column("customer_type", sa.String(length=20), nullable=False, server_default="individual"),
            sa.Column("tier", sa.String(length=20), nullable=False, server_default="bronze"),
            sa.Column("billing_address", sa.JSON(), nullable=True),
            sa.Column("shipping_address", sa.JSON(), nullable=True),
            sa.Column("assigned_representative", sa.String(length=36), nullable=True),
            sa.Column("payment_terms", sa.String(length=60), nullable=True),
            sa.Column("credit_limit", sa.Numeric(12, 2), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _version(),
            *_timestamps(),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
            sa.ForeignKeyConstraint(["assigned_representative"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("sku", sa.String(length=80), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "inventory"):
        op.create_table(
            "inventory",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("location", sa.String(length=120), nullable=False, server_default="main"),
            sa.Column("available_quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("reserved_quantity", sa.Integer(), nullable=False, server_default="0"),
            *_timestamps(),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("order_number", sa.String(length=30), nullable=False),
            sa.Column("customer_id", sa.String(length=36), nullable=False),
            sa.Column("order_status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("order_type", sa.String(length=20), nullable=False, server_default="standard"),
            sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("payment_method", sa.String(length=30), nullable=True),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
            sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
            sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("shipping_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("billing_address", sa.JSON(), nullable=True),
            sa.Column("shipping_address", sa.JSON(), nullable=True),
            sa.Column("delivery_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("special_instructions", sa.Text(), nullable=True),
            sa.Column("assigned_to", sa.String(length=36), nullable=True),
            sa.Column("created_by", sa.String(length=36), nullable=False),
            _version(),
            *_timestamps(),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
            sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
            sa.ForeignKeyConstraint(["assigned_to"], ["users.id"]),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "order_items"):
        op.create_table(
            "order_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("order_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("sku", sa.String(length=80), nullable=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False, server_default="0"),
            sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("notes", sa.String(length=255), nullable=True),
            *_timestamps(updated=False),
            sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "sequences"):
        op.create_table(
            "sequences",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("organization_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=40), nullable=False),
            sa.Column("value", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    inspector = sa.inspect(bind)
    for index_name, table_name, columns, unique in INDEXES:
        if not _index_exists(inspector, table_name, index_name):
            op.create_index(index_name, table_name, columns, unique=unique)


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for index_name, table_name, _columns, _unique in reversed(INDEXES):
        if _table_exists(inspector, table_name) and _index_exists(inspector, table_name, index_name):
            op.drop_index(index_name, table_name=table_name)

    for table_name in (
        "sequences",
        "order_items",
        "orders",
        "inventory",
        "products",
        "customers",
        "task_comments",
        "tasks",
        "user_organizations",
        "users",
        "organizations",
    ):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
