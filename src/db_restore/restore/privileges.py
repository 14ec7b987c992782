"""Row-level-security bypass for the restore transaction.

A restore must see and write every tenant's rows.  Strategies are tried in
order, each inside its own SAVEPOINT so a refused ``SET ROLE`` does not
abort the surrounding transaction.  The first strategy that succeeds wins.
If none does, the restore is refused: continuing would let RLS silently
filter rows and produce an incomplete restore.

With ``row_security = off`` a statement that RLS would filter raises
instead of filtering, so the last strategy fails loudly rather than
partially.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from db_restore.adapters.base import TransactionClient
from db_restore.restore.errors import PrivilegeEscalationError
from db_restore.schema.identifiers import quote_ident

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrivilegeStrategy:
    """One way of lifting row-level security for the transaction.

    Example:
        strategy = PrivilegeStrategy("role:postgres", 'SET LOCAL ROLE "postgres"')
    """

    name: str
    sql: str
    params: dict[str, Any] = field(default_factory=dict)


def default_strategies(
    superuser_role: str = "postgres",
    admin_role: str = "platform_admin",
) -> list[PrivilegeStrategy]:
    """Superuser role, then platform-admin role, then ``row_security = off``."""
    return [
        PrivilegeStrategy(f"role:{superuser_role}", f"SET LOCAL ROLE {quote_ident(superuser_role)}"),
        PrivilegeStrategy(f"role:{admin_role}", f"SET LOCAL ROLE {quote_ident(admin_role)}"),
        PrivilegeStrategy(
            "row_security:off",
            "SELECT set_config('row_security', :value, true)",
            {"value": "off"},
        ),
    ]


async def escalate_privileges(
    tx: TransactionClient,
    strategies: list[PrivilegeStrategy],
) -> str:
    """Apply the first strategy that succeeds.

    Returns:
        Name of the strategy that took effect.

    Raises:
        PrivilegeEscalationError: If every strategy failed.
    """
    attempted: list[str] = []
    for strategy in strategies:
        attempted.append(strategy.name)
        try:
            async with tx.savepoint():
                await tx.execute(strategy.sql, strategy.params)
        except Exception as e:
            logger.debug(f"Privilege strategy {strategy.name} failed: {e}")
            continue
        logger.info(f"Row-level security bypassed via {strategy.name}")
        return strategy.name

    raise PrivilegeEscalationError(attempted)
