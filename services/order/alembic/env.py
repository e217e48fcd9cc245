from logging.config import fileConfig
from sqlalchemy import pool
from alembic import context
from app.core.config import settings
from app.db.session import Base, make_engine
import app.db.models  # noqa

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# each service keeps its own version table in the shared database
VERSION_TABLE = "alembic_version_order"

def _dsn() -> str:
    return config.get_main_option("sqlalchemy.url") or settings.POSTGRES_DSN

def run_migrations_offline():
    context.configure(
        url=_dsn(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        version_table=VERSION_TABLE,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()

def run_migrations_online():
    connectable = make_engine(_dsn(), poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            version_table=VERSION_TABLE,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()

if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
