"""create appointment slot and medical record tables

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00

"""
from alembic import op
import sqlalchemy as sa

revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'appointment_slots',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('doctor_id', sa.String(64), nullable=False),
        sa.Column('patient_id', sa.String(64), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('symptoms', sa.Text(), nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('idx_doctor_start_time', 'appointment_slots', ['doctor_id', 'start_time'])
    op.create_index('idx_patient_start_time', 'appointment_slots', ['patient_id', 'start_time'])

    op.create_table(
        'medical_records',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('appointment_id', sa.String(36),
                  sa.ForeignKey('appointment_slots.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('patient_id', sa.String(64), nullable=False),
        sa.Column('doctor_id', sa.String(64), nullable=False),
        sa.Column('doctor_notes', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_medical_records_patient_id', 'medical_records', ['patient_id'])


def downgrade():
    op.drop_index('ix_medical_records_patient_id', table_name='medical_records')
    op.drop_table('medical_records')
    op.drop_index('idx_patient_start_time', table_name='appointment_slots')
    op.drop_index('idx_doctor_start_time', table_name='appointment_slots')
    op.drop_table('appointment_slots')
