from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'tagboxes',
        sa.Column('tbid', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(64), nullable=False, unique=True, index=True),
        sa.Column('affected_type', sa.String(16), nullable=False, server_default='object'),
        sa.Column('nosy_gtids', sa.String(255), nullable=False, server_default=''),
        sa.Column('weight', sa.Float, nullable=False, server_default='1'),
        sa.Column('params', sa.JSON, nullable=True),
        sa.Column('last_run_completed', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_tagid_logged', sa.Integer, nullable=False, server_default='0'),
        sa.Column('last_tdid_logged', sa.Integer, nullable=False, server_default='0'),
        sa.Column('last_tuid_logged', sa.Integer, nullable=False, server_default='0'),
    )
    op.create_table(
        'tagbox_userkeyregexes',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(64), sa.ForeignKey('tagboxes.name'), index=True, nullable=False),
        sa.Column('userkeyregex', sa.String(255), nullable=False),
    )
    op.create_index('ux_tagbox_userkeyregex', 'tagbox_userkeyregexes', ['name', 'userkeyregex'], unique=True)
    op.create_table(
        'globj_types',
        sa.Column('gtid', sa.Integer, primary_key=True),
        sa.Column('maintable', sa.String(64), nullable=False, unique=True),
    )
    op.create_table(
        'globjs',
        sa.Column('globjid', sa.Integer, primary_key=True),
        sa.Column('gtid', sa.Integer, sa.ForeignKey('globj_types.gtid'), index=True, nullable=False),
        sa.Column('target_id', sa.Integer, index=True, nullable=False),
    )
    op.create_index('ux_globj_target', 'globjs', ['gtid', 'target_id'], unique=True)
    op.create_table(
        'tags',
        sa.Column('tagid', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('tagnameid', sa.Integer, index=True, nullable=False),
        sa.Column('globjid', sa.Integer, sa.ForeignKey('globjs.globjid'), index=True, nullable=False),
        sa.Column('uid', sa.Integer, index=True, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), index=True, nullable=False),
        sa.Column('inactivated', sa.DateTime(timezone=True), nullable=True),
        sa.Column('private', sa.Integer, nullable=False, server_default='0'),
    )
    op.create_index('ix_tags_globjid_tagid', 'tags', ['globjid', 'tagid'])
    op.create_index('ix_tags_uid_tagid', 'tags', ['uid', 'tagid'])
    op.create_table(
        'tags_deactivated',
        sa.Column('tdid', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('tagid', sa.Integer, sa.ForeignKey('tags.tagid'), index=True, nullable=False),
    )
    op.create_table(
        'tags_userchange',
        sa.Column('tuid', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('created_at', sa.DateTime(timezone=True), index=True, nullable=False),
        sa.Column('uid', sa.Integer, index=True, nullable=False),
        sa.Column('user_key', sa.String(64), nullable=False),
        sa.Column('value_old', sa.String(255), nullable=True),
        sa.Column('value_new', sa.String(255), nullable=True),
    )
    op.create_table(
        'tagboxlog_feeder',
        sa.Column('tfid', sa.BigInteger().with_variant(sa.Integer, 'sqlite'), primary_key=True, autoincrement=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('tbid', sa.Integer, sa.ForeignKey('tagboxes.tbid'), index=True, nullable=False),
        sa.Column('affected_id', sa.Integer, nullable=False),
        sa.Column('importance', sa.Float, nullable=False, server_default='1'),
        sa.Column('tagid', sa.Integer, nullable=True),
        sa.Column('tdid', sa.Integer, nullable=True),
        sa.Column('tuid', sa.Integer, nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_feeder_tbid_affected', 'tagboxlog_feeder', ['tbid', 'affected_id', 'tfid'])


def downgrade():
    op.drop_index('ix_feeder_tbid_affected', table_name='tagboxlog_feeder')
    op.drop_table('tagboxlog_feeder')
    op.drop_table('tags_userchange')
    op.drop_table('tags_deactivated')
    op.drop_index('ix_tags_uid_tagid', table_name='tags')
    op.drop_index('ix_tags_globjid_tagid', table_name='tags')
    op.drop_table('tags')
    op.drop_index('ux_globj_target', table_name='globjs')
    op.drop_table('globjs')
    op.drop_table('globj_types')
    op.drop_index('ux_tagbox_userkeyregex', table_name='tagbox_userkeyregexes')
    op.drop_table('tagbox_userkeyregexes')
    op.drop_table('tagboxes')
