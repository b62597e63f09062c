import logging
import os
from logging.config import fileConfig

from alembic import context
from flask import current_app
from sqlalchemy import create_engine, text

from reportshare import models  # noqa: F401  registers every table on the metadata
from reportshare.config import normalize_db_url

config = context.config
fileConfig(config.config_file_name)
logger = logging.getLogger('alembic.env')

SQLITE_TEMP_TABLE_QUERY = text(
    "SELECT name FROM sqlite_master WHERE type='table' AND name LIKE '_alembic_tmp_%'"
)


def get_engine():
    """``ALEMBIC_DATABASE_URL`` wins over the app engine (e.g. a direct, non-pooled URL)."""
    override = normalize_db_url(os.environ.get('ALEMBIC_DATABASE_URL'))
    if override:
        return create_engine(override)
    return current_app.extensions['migrate'].db.engine


def get_engine_url(engine):
    return engine.url.render_as_string(hide_password=False).replace('%', '%%')


def get_metadata():
    target_db = current_app.extensions['migrate'].db
    if hasattr(target_db, 'metadatas'):
        return target_db.metadatas[None]
    return target_db.metadata


def drop_stale_batch_tables(connection):
    # An interrupted batch migration leaves _alembic_tmp_* tables behind on SQLite.
    if connection.dialect.name != 'sqlite':
        return
    stale = [row[0] for row in connection.execute(SQLITE_TEMP_TABLE_QUERY)]
    for table_name in stale:
        connection.execute(text(f'DROP TABLE IF EXISTS "{table_name}"'))
        logger.info("Dropped stale batch table %s", table_name)
    if stale:
        connection.commit()


def skip_empty_autogenerate(context, revision, directives):
    if getattr(config.cmd_opts, 'autogenerate', False) and directives[0].upgrade_ops.is_empty():
        directives[:] = []
        logger.info('No changes in schema detected.')


def run_migrations_offline(engine):
    context.configure(url=get_engine_url(engine), target_metadata=get_metadata(), literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online(engine):
    conf_args = dict(current_app.extensions['migrate'].configure_args)
    conf_args.setdefault('process_revision_directives', skip_empty_autogenerate)
    conf_args['transaction_per_migration'] = True

    with engine.connect() as connection:
        drop_stale_batch_tables(connection)
        context.configure(connection=connection, target_metadata=get_metadata(), **conf_args)
        with context.begin_transaction():
            context.run_migrations()


_engine = get_engine()
config.set_main_option('sqlalchemy.url', get_engine_url(_engine))

if context.is_offline_mode():
    run_migrations_offline(_engine)
else:
    run_migrations_online(_engine)
