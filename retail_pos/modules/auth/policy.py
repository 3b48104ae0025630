"""
Política de autorización centralizada.

Cada operación mutante del motor consulta esta tabla al comenzar, en lugar
de repetir chequeos de rol en cada servicio.
"""
import enum
import logging
from typing import Dict, FrozenSet, Optional

from retail_pos.common.exceptions import AuthorizationError
from retail_pos.modules.auth.schemas import AuthContext, Role

logger = logging.getLogger(__name__)


class Operation(enum.Enum):
    CREATE_SALE = "create_sale"
    CREATE_CREDIT_NOTE = "create_credit_note"
    DELETE_ORDER = "delete_order"
    OPEN_TILL = "open_till"
    CLOSE_TILL = "close_till"
    RECORD_TREASURY_MOVEMENT = "record_treasury_movement"
    SETTLE_CURRENT_ACCOUNT = "settle_current_account"
    RECORD_STOCK_MOVEMENT = "record_stock_movement"
    VIEW_RECONCILIATION = "view_reconciliation"


_ALL_ROLES = frozenset({Role.ADMIN, Role.SUPERVISOR, Role.CASHIER})
_MANAGERS = frozenset({Role.ADMIN, Role.SUPERVISOR})

DEFAULT_RULES: Dict[Operation, FrozenSet[Role]] = {
    Operation.CREATE_SALE: _ALL_ROLES,
    Operation.CREATE_CREDIT_NOTE: _MANAGERS,
    Operation.DELETE_ORDER: frozenset({Role.ADMIN}),
    Operation.OPEN_TILL: _ALL_ROLES,
    Operation.CLOSE_TILL: _ALL_ROLES,
    Operation.RECORD_TREASURY_MOVEMENT: _ALL_ROLES,
    Operation.SETTLE_CURRENT_ACCOUNT: _ALL_ROLES,
    Operation.RECORD_STOCK_MOVEMENT: _MANAGERS,
    Operation.VIEW_RECONCILIATION: _ALL_ROLES,
}


class AuthorizationPolicy:
    """Resuelve si un rol puede ejecutar una operación"""

    def __init__(self, rules: Optional[Dict[Operation, FrozenSet[Role]]] = None):
        self.rules = rules if rules is not None else DEFAULT_RULES

    def is_allowed(self, role: Optional[Role], operation: Operation) -> bool:
        if role is None:
            return False
        return role in self.rules.get(operation, frozenset())

    def authorize(self, actor: AuthContext, operation: Operation) -> None:
        """Lanza AuthorizationError si el rol del actor no habilita la operación"""
        if not self.is_allowed(actor.user_role, operation):
            logger.warning(
                f"Operación {operation.value} denegada a {actor.user_id} (rol: {actor.user_role})"
            )
            allowed = ", ".join(sorted(r.value for r in self.rules.get(operation, frozenset())))
            raise AuthorizationError(
                f"Se requiere uno de estos roles: {allowed}",
                operation=operation.value
            )


policy = AuthorizationPolicy()
