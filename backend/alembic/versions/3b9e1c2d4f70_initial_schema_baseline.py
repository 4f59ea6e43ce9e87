"""initial_schema_baseline

Revision ID: 3b9e1c2d4f70
Revises:
Create Date: 2026-10-19 09:00:00.000000

Baseline migration for the booking core. Creates all tables from the current
model definitions, then adds the partial index used by the no-show job.
"""
from typing import Sequence, Union
import sys
import os

# Add src directory to path to import models
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from alembic import op
import sqlalchemy as sa

# Import all models to ensure they're registered with Base.metadata
from core.database import Base
import models  # noqa: F401


# revision identifiers, used by Alembic.
revision: str = '3b9e1c2d4f70'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create all database tables from SQLAlchemy models.

    Tables: users, vehicles, service_items, slots, slot_technicians,
    technician_profiles, technician_skills, appointments,
    appointment_service_lines, appointment_workflow_events,
    appointment_cancel_requests, appointment_parts_shortages,
    refund_ledger_entries, pending_payments, appointment_side_effect_failures.
    """
    Base.metadata.create_all(bind=op.get_bind())

    # The no-show job scans only pending/confirmed appointments without a check-in
    op.create_index(
        'idx_appointments_no_show_scan',
        'appointments',
        ['scheduled_date', 'scheduled_time'],
        postgresql_where=sa.text("status IN ('pending', 'confirmed') AND arrived_at IS NULL"),
    )

    # Pending payments are expired by the same job
    op.create_index(
        'idx_pending_payments_expiry',
        'pending_payments',
        ['expires_at'],
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index('idx_pending_payments_expiry', table_name='pending_payments')
    op.drop_index('idx_appointments_no_show_scan', table_name='appointments')
    Base.metadata.drop_all(bind=op.get_bind())
