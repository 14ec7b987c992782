"""Pydantic models for database profiles and restore settings."""

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"


class RestoreSettings(BaseModel):
    """``[restore]`` section of db.toml.

    Timeout values are PostgreSQL interval strings (``"30min"``, ``"2h"``)
    and are raised only for the duration of the restore transaction.
    """

    batch_size: int = Field(default=1000, gt=0)
    statement_timeout: str = "30min"
    idle_in_transaction_session_timeout: str = "60min"
    superuser_role: str = "postgres"
    admin_role: str = "platform_admin"
    advisory_lock: bool = True
    schema_name: str = "public"
    operations_table: str = "platform_restore_operations"
    migrations_table: str = "drizzle.__drizzle_migrations"
    extra_excluded_tables: list[str] = Field(default_factory=list)

    def system_table_names(self) -> list[str]:
        """Configured tables a restore must never touch.

        The operations table and the bare name of the migrations table join
        ``extra_excluded_tables``, so renaming either in db.toml keeps it
        out of truncation and backups.

        Example:
            >>> RestoreSettings(migrations_table='"ops"."Migrations"').system_table_names()
            ['platform_restore_operations', 'Migrations']
        """
        migrations = self.migrations_table.rsplit(".", 1)[-1].strip('"')
        return [*self.extra_excluded_tables, self.operations_table, migrations]


class BackupSettings(BaseModel):
    """``[backups]`` section of db.toml."""

    directory: str = "backups"


class DatabaseConfig(BaseModel):
    """Complete configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]
    restore: RestoreSettings = Field(default_factory=RestoreSettings)
    backups: BackupSettings = Field(default_factory=BackupSettings)
