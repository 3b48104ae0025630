"""
Unidad de trabajo para las operaciones del motor.

Dentro del bloque solo se hace flush(); el commit ocurre al salir sin errores.
Cualquier excepción provoca rollback completo antes de propagarse, de modo que
ningún lector externo observa una orden aplicada a medias.
"""
from contextlib import contextmanager
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from retail_pos.common.exceptions import EngineError, IntegrityFailureError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(db: Session, action: str):
    """Ejecutar el bloque como una única transacción."""
    try:
        yield db
        db.commit()
    except EngineError as e:
        db.rollback()
        logger.info(f"{action} rechazada: {e.detail}")
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"{action} revertida por error de base de datos: {e}")
        raise IntegrityFailureError(action=action) from e
    except Exception as e:
        db.rollback()
        logger.error(f"{action} revertida: {e}")
        raise IntegrityFailureError(action=action) from e
