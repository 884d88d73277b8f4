"""initial pms schema (users, rbac, org, salary structure, payroll)

Revision ID: 3f1a9c7d2b10
Revises:
Create Date: 2025-06-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a9c7d2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

FREQUENCIES = ('weekly', 'biweekly', 'monthly', 'quarterly', 'annual')
APPROVAL_STATES = ('pending', 'approved', 'rejected')
PAYROLL_STATUSES = (
    'DRAFT', 'PENDING', 'APPROVED', 'REJECTED',
    'PENDING_PAYMENT', 'PAID', 'CANCELLED', 'FAILED', 'ARCHIVED',
)


def _money(name, nullable=False):
    return sa.Column(name, sa.Numeric(14, 2), nullable=nullable, server_default='0' if not nullable else None)


def upgrade() -> None:
    # ---- users / rbac ----
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('role', sa.Enum('USER', 'ADMIN', 'SUPER_ADMIN', name='user_role_enum'), nullable=False),
        sa.Column('status', sa.String(20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(120), nullable=False, unique=True),
        sa.Column('name', sa.String(150), nullable=True),
    )
    op.create_table(
        'user_permissions',
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('permission_id', sa.Integer(), sa.ForeignKey('permissions.id', ondelete='CASCADE'),
                  primary_key=True),
    )

    # ---- organisation ----
    op.create_table(
        'departments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(20), nullable=True, unique=True),
        sa.Column('name', sa.String(120), nullable=False, unique=True),
        sa.Column('description', sa.String(255)),
        sa.Column('head_user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'salary_grades',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('level', sa.String(20), nullable=False, unique=True),
        sa.Column('description', sa.String(255)),
        sa.Column('basic_salary', sa.Numeric(14, 2), nullable=False),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('departments.id', ondelete='SET NULL')),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_table(
        'salary_components',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('grade_id', sa.Integer(), sa.ForeignKey('salary_grades.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('type', sa.Enum('allowance', 'deduction', name='component_type_enum'), nullable=False),
        sa.Column('calculation_method', sa.Enum('fixed', 'percentage', name='calc_method_enum'), nullable=False),
        sa.Column('value', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('taxable', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('position', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('grade_id', 'name', 'type', name='uq_grade_component_name'),
    )
    op.create_index('ix_salary_components_grade_id', 'salary_components', ['grade_id'])

    op.create_table(
        'employees',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('departments.id', ondelete='RESTRICT')),
        sa.Column('salary_grade_id', sa.Integer(), sa.ForeignKey('salary_grades.id', ondelete='RESTRICT')),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), unique=True),
        sa.Column('code', sa.String(32), nullable=False, unique=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('first_name', sa.String(80), nullable=False),
        sa.Column('last_name', sa.String(80)),
        sa.Column('phone', sa.String(20)),
        sa.Column('position', sa.String(120)),
        sa.Column('nhf_number', sa.String(40)),
        sa.Column('pension_number', sa.String(40)),
        sa.Column('tax_id', sa.String(40)),
        sa.Column('overtime_hours', sa.Numeric(8, 2), nullable=False, server_default='0'),
        sa.Column('overtime_rate', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('doj', sa.Date()),
        sa.Column('dol', sa.Date()),
        sa.Column('status', sa.String(16), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_emp_dept_id', 'employees', ['department_id'])
    op.create_index('ix_emp_grade_id', 'employees', ['salary_grade_id'])
    op.create_index('ix_emp_status', 'employees', ['status'])

    op.create_table(
        'employee_bank_accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('bank_name', sa.String(80), nullable=False),
        sa.Column('account_number', sa.String(40), nullable=False),
        sa.Column('account_name', sa.String(160), nullable=False),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_employee_bank_accounts_employee_id', 'employee_bank_accounts', ['employee_id'])
    op.create_index('ix_empbank_primary', 'employee_bank_accounts', ['employee_id', 'is_primary'])

    # ---- pay items ----
    op.create_table(
        'allowances',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('description', sa.String(255)),
        sa.Column('calculation_method', sa.Enum('fixed', 'percentage', name='allowance_calc_enum'), nullable=False),
        sa.Column('value', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('frequency', sa.Enum(*FREQUENCIES, name='allowance_freq_enum'), nullable=False),
        sa.Column('taxable', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('approval_status', sa.Enum(*APPROVAL_STATES, name='allowance_approval_enum'), nullable=False),
        sa.Column('approved_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('approved_at', sa.DateTime(timezone=True)),
        sa.Column('effective_date', sa.Date(), nullable=False),
        sa.Column('expiry_date', sa.Date()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_allowances_employee_id', 'allowances', ['employee_id'])

    op.create_table(
        'bonuses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('departments.id', ondelete='SET NULL')),
        sa.Column('type', sa.Enum('performance', 'thirteenth_month', 'special', 'achievement', 'retention',
                                  'project', name='bonus_type_enum'), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('description', sa.String(255)),
        sa.Column('payment_date', sa.Date()),
        sa.Column('effective_date', sa.Date(), nullable=False),
        sa.Column('expiry_date', sa.Date()),
        sa.Column('taxable', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('approval_status', sa.Enum(*APPROVAL_STATES, name='bonus_approval_enum'), nullable=False),
        sa.Column('approved_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('approved_at', sa.DateTime(timezone=True)),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_bonuses_employee_id', 'bonuses', ['employee_id'])
    op.create_index('ix_bonus_emp_status', 'bonuses', ['employee_id', 'approval_status'])

    op.create_table(
        'employee_deductions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('kind', sa.Enum('loan', 'union_dues', 'cooperative', 'other', name='emp_deduction_kind_enum'),
                  nullable=False),
        sa.Column('description', sa.String(255), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_employee_deductions_employee_id', 'employee_deductions', ['employee_id'])

    op.create_table(
        'stat_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('type', sa.Enum('PAYE', 'PENSION', 'NHF', 'RELIEF', name='statconfig_type'), nullable=False),
        sa.Column('key', sa.String(80), nullable=False),
        sa.Column('value_json', sa.JSON(), nullable=False),
        sa.Column('scope_department_id', sa.Integer(), sa.ForeignKey('departments.id', ondelete='CASCADE')),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('effective_from', sa.Date(), nullable=False),
        sa.Column('effective_to', sa.Date()),
        sa.Column('created_by', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('closed_by', sa.Integer()),
        sa.Column('closed_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_statcfg_resolve', 'stat_configs',
                    ['type', 'scope_department_id', 'effective_from', 'effective_to', 'priority'])

    # ---- payroll ----
    op.create_table(
        'payrolls',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('departments.id', ondelete='SET NULL')),
        sa.Column('salary_grade_id', sa.Integer(), sa.ForeignKey('salary_grades.id', ondelete='SET NULL')),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('frequency', sa.Enum(*FREQUENCIES, name='payroll_freq_enum'), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        _money('basic_salary'),
        _money('total_allowances'),
        _money('total_bonuses'),
        _money('overtime_amount'),
        _money('gross_earnings'),
        _money('taxable_amount'),
        _money('pensionable_amount'),
        _money('tax_amount'),
        _money('pension_amount'),
        _money('nhf_amount'),
        _money('loan_amount'),
        _money('other_deductions'),
        _money('total_deductions'),
        _money('net_pay'),
        sa.Column('status', sa.Enum(*PAYROLL_STATUSES, name='payroll_status_enum'), nullable=False),
        sa.Column('approval_level', sa.String(32)),
        sa.Column('bank_snapshot', sa.JSON()),
        sa.Column('payment_reference', sa.String(64)),
        sa.Column('payment_initiated_at', sa.DateTime(timezone=True)),
        sa.Column('paid_at', sa.DateTime(timezone=True)),
        sa.Column('failure_reason', sa.String(255)),
        sa.Column('remarks', sa.String(255)),
        sa.Column('calc_meta', sa.JSON()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('updated_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('employee_id', 'month', 'year', 'frequency', name='uq_payroll_emp_period'),
    )
    op.create_index('ix_payrolls_employee_id', 'payrolls', ['employee_id'])
    op.create_index('ix_payrolls_department_id', 'payrolls', ['department_id'])
    op.create_index('ix_payroll_period_status', 'payrolls', ['year', 'month', 'status'])

    op.create_table(
        'payroll_lines',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('payroll_id', sa.Integer(), sa.ForeignKey('payrolls.id', ondelete='CASCADE'), nullable=False),
        sa.Column('category', sa.Enum('earning', 'allowance', 'bonus', 'deduction', name='payroll_line_cat_enum'),
                  nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('source', sa.String(30)),
        sa.Column('source_id', sa.Integer()),
        sa.Column('calculation_method', sa.String(20)),
        sa.Column('value', sa.Numeric(14, 2)),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('taxable', sa.Boolean()),
    )
    op.create_index('ix_payroll_lines_payroll_id', 'payroll_lines', ['payroll_id'])
    op.create_index('ix_payroll_line_source', 'payroll_lines', ['source', 'source_id'])

    op.create_table(
        'payroll_approvals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('payroll_id', sa.Integer(), sa.ForeignKey('payrolls.id', ondelete='CASCADE'), nullable=False),
        sa.Column('level', sa.String(30)),
        sa.Column('action', sa.String(30), nullable=False),
        sa.Column('from_status', sa.String(20)),
        sa.Column('to_status', sa.String(20), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('remarks', sa.String(255)),
        sa.Column('created_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_payroll_approvals_payroll_id', 'payroll_approvals', ['payroll_id'])

    op.create_table(
        'payroll_periods',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('employee_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payroll_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_net_salary', sa.Numeric(16, 2), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('month', 'year', name='uq_payroll_period'),
    )


def downgrade() -> None:
    for table in (
        'payroll_periods', 'payroll_approvals', 'payroll_lines', 'payrolls',
        'stat_configs', 'employee_deductions', 'bonuses', 'allowances',
        'employee_bank_accounts', 'employees', 'salary_components', 'salary_grades',
        'departments', 'user_permissions', 'permissions', 'users',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for enum_name in (
            'payroll_status_enum', 'payroll_freq_enum', 'payroll_line_cat_enum', 'statconfig_type',
            'emp_deduction_kind_enum', 'bonus_type_enum', 'bonus_approval_enum', 'allowance_approval_enum',
            'allowance_freq_enum', 'allowance_calc_enum', 'calc_method_enum', 'component_type_enum',
            'user_role_enum',
        ):
            sa.Enum(name=enum_name).drop(bind, checkfirst=True)
