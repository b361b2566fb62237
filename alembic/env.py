from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from leaddesk.core.config import get_settings
from leaddesk.core.database import Base
from leaddesk.leads import models  # noqa: F401  registers the lead tables on Base.metadata

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def database_url() -> str:
    # DATABASE_URL (through settings) wins over alembic.ini.
    return get_settings().database_url or config.get_main_option("sqlalchemy.url", "")


def migrate(**options) -> None:  # type: ignore[no-untyped-def]
    context.configure(target_metadata=Base.metadata, compare_type=True, **options)
    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    migrate(url=database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
else:
    engine = create_engine(database_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        migrate(connection=connection)
