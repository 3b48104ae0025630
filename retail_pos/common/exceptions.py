"""
Excepciones de dominio del motor de ventas y cajas.

Todas heredan de HTTPException para que los servicios puedan lanzarlas
directamente y FastAPI las convierta en la respuesta adecuada. Cada clase
define su status_code y un detalle por defecto.
"""
from typing import Any, Optional

from fastapi import HTTPException, status


class EngineError(HTTPException):
    """Base para todos los errores del motor."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Error en la operación"

    def __init__(self, detail: Optional[str] = None, **context: Any):
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail)
        self.context = context


class NotFoundError(EngineError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Recurso no encontrado"


class ValidationError(EngineError):
    """Datos de la operación inválidos; se detecta antes de cualquier escritura."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "Datos de la operación inválidos"


class AuthorizationError(EngineError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "No tienes permisos para realizar esta operación"


# ===== ERRORES DE ESTADO =====

class StateError(EngineError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "La operación no es válida en el estado actual"


class TillAlreadyOpenError(StateError):
    default_detail = "Ya existe una caja abierta. Cierra la caja antes de abrir otra."


class TillNotOpenError(StateError):
    default_detail = "No hay un lote de caja abierto para esta operación"


class AlreadyAnnulledError(StateError):
    default_detail = "La venta ya fue anulada"


# ===== POLÍTICA DE CRÉDITO =====

class CreditPolicyError(EngineError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "La operación viola la política de cuenta corriente"


class CreditLimitExceededError(CreditPolicyError):
    default_detail = "El total supera el límite de cuenta corriente del cliente"


class InvalidClientForCreditError(CreditPolicyError):
    default_detail = "El consumidor final no puede operar en cuenta corriente"


# ===== STOCK =====

class StockError(EngineError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Error de stock"


class InsufficientStockError(StockError):
    default_detail = "Stock insuficiente"


class UnresolvableComboError(StockError):
    default_detail = "No se pudo determinar la variante de un componente del artículo"


# ===== INTEGRIDAD =====

class IntegrityFailureError(EngineError):
    """Falla a mitad de la secuencia; se lanza después del rollback completo."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "La operación falló y fue revertida. Reintente."
