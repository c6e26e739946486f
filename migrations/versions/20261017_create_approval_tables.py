"""Create expense approval tables

Revision ID: 20261017_approval_tables
Revises:
Create Date: 2026-10-17 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261017_approval_tables'
down_revision = None
branch_labels = None
depends_on = None


user_role = sa.Enum('ADMIN', 'MANAGER', 'EMPLOYEE', name='user_role')
expense_status = sa.Enum('PENDING', 'APPROVED', 'REJECTED', 'PAID', name='expense_status')
level_policy = sa.Enum('ANY_ONE', 'ALL_REQUIRED', name='level_policy')
approval_status = sa.Enum('PENDING', 'APPROVED', 'REJECTED', 'UNRESOLVED', name='approval_status')
approval_routing = sa.Enum('FLOW', 'ORG_CHART', 'BYPASS', 'UNRESOLVED', name='approval_routing')
decision_type = sa.Enum('APPROVE', 'REJECT', name='decision_type')


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = inspector.get_table_names()

    if 'users' not in tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('first_name', sa.String(length=100), nullable=False),
            sa.Column('last_name', sa.String(length=100), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('password_hash', sa.String(length=255), nullable=False),
            sa.Column('role', user_role, nullable=False),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        )
        op.create_index('ix_users_email', 'users', ['email'], unique=True)

    if 'employee_profiles' not in tables:
        op.create_table(
            'employee_profiles',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, unique=True),
            sa.Column('manager_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        )

    if 'cost_centers' not in tables:
        op.create_table(
            'cost_centers',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('code', sa.String(length=50), nullable=False, unique=True),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('budget', sa.Numeric(14, 2), nullable=True),
            sa.Column('department', sa.String(length=120), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        )

    if 'expenses' not in tables:
        op.create_table(
            'expenses',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('submitter_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('cost_center_id', sa.Integer(), sa.ForeignKey('cost_centers.id'), nullable=True),
            sa.Column('amount', sa.Numeric(12, 2), nullable=False),
            sa.Column('currency', sa.String(length=10), nullable=False),
            sa.Column('category', sa.String(length=120), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('vendor_name', sa.String(length=255), nullable=True),
            sa.Column('date_spent', sa.Date(), nullable=False),
            sa.Column('status', expense_status, nullable=False),
            sa.Column('rejection_reason', sa.Text(), nullable=True),
            sa.Column('decided_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('decided_at', sa.DateTime(), nullable=True),
            sa.Column('receipt_path', sa.String(length=255), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        )
        op.create_index('ix_expenses_submitter_user_id', 'expenses', ['submitter_user_id'])
        op.create_index('ix_expenses_cost_center_id', 'expenses', ['cost_center_id'])
        op.create_index('ix_expenses_vendor_name', 'expenses', ['vendor_name'])

    if 'approval_flows' not in tables:
        op.create_table(
            'approval_flows',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('min_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
            sa.Column('max_amount', sa.Numeric(12, 2), nullable=True),
            sa.Column('cost_center_id', sa.Integer(), sa.ForeignKey('cost_centers.id'), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('levels', sa.JSON(), nullable=False),
            sa.Column('level_policy', level_policy, nullable=False),
            sa.Column('created_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        )
        op.create_index('ix_approval_flows_cost_center_id', 'approval_flows', ['cost_center_id'])
        op.create_index('ix_approval_flows_is_active', 'approval_flows', ['is_active'])

    if 'expense_approvals' not in tables:
        op.create_table(
            'expense_approvals',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('expense_id', sa.Integer(), sa.ForeignKey('expenses.id'), nullable=False, unique=True),
            sa.Column('approval_flow_id', sa.Integer(), sa.ForeignKey('approval_flows.id'), nullable=True),
            sa.Column('levels', sa.JSON(), nullable=False),
            sa.Column('level_policy', level_policy, nullable=False),
            sa.Column('current_level', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_levels', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('status', approval_status, nullable=False),
            sa.Column('routing', approval_routing, nullable=False),
            sa.Column('rejection_reason', sa.Text(), nullable=True),
            sa.Column('hook_dispatched_at', sa.DateTime(), nullable=True),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        )
        op.create_index('ix_expense_approvals_approval_flow_id', 'expense_approvals', ['approval_flow_id'])
        op.create_index('ix_expense_approvals_status', 'expense_approvals', ['status'])

    if 'approval_decisions' not in tables:
        op.create_table(
            'approval_decisions',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column(
                'expense_approval_id', sa.Integer(), sa.ForeignKey('expense_approvals.id'), nullable=False
            ),
            sa.Column('level', sa.Integer(), nullable=False),
            sa.Column('approver_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('decision', decision_type, nullable=False),
            sa.Column('comments', sa.Text(), nullable=True),
            sa.Column('decided_at', sa.DateTime(), nullable=False),
            sa.UniqueConstraint(
                'expense_approval_id', 'level', 'approver_user_id', name='uq_approval_decision_level_approver'
            ),
        )
        op.create_index(
            'ix_approval_decisions_expense_approval_id', 'approval_decisions', ['expense_approval_id']
        )
        op.create_index('ix_approval_decisions_approver_user_id', 'approval_decisions', ['approver_user_id'])

    if 'audit_logs' not in tables:
        op.create_table(
            'audit_logs',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('entity_type', sa.String(length=120), nullable=False),
            sa.Column('entity_id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('action', sa.String(length=120), nullable=False),
            sa.Column('timestamp', sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.Column('extra_data', sa.JSON(), nullable=True),
        )
        op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])
        op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])


def downgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = inspector.get_table_names()

    for table in (
        'audit_logs',
        'approval_decisions',
        'expense_approvals',
        'approval_flows',
        'expenses',
        'cost_centers',
        'employee_profiles',
        'users',
    ):
        if table in tables:
            op.drop_table(table)

    for enum_type in (decision_type, approval_routing, approval_status, level_policy, expense_status, user_role):
        enum_type.drop(bind, checkfirst=True)
