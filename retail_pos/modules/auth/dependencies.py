"""
Dependencias de autenticación para FastAPI.

El motor no administra usuarios: confía en el JWT firmado por el proveedor
de identidad y toma de él el id del usuario (sub) y su rol.
"""
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from retail_pos.core.config import settings
from retail_pos.modules.auth.schemas import AuthContext, Role

# Security scheme
security = HTTPBearer()


class AuthDependencies:
    """Dependencias de autenticación reutilizables."""

    @staticmethod
    def get_auth_context(
        credentials: HTTPAuthorizationCredentials = Depends(security)
    ) -> AuthContext:
        """Obtener contexto de autenticación desde el token JWT."""
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No se pudieron validar las credenciales",
            headers={"WWW-Authenticate": "Bearer"},
        )

        try:
            payload = jwt.decode(
                credentials.credentials,
                settings.APP_SECRET_STRING,
                algorithms=[settings.ALGORITHM]
            )
            user_id = payload.get("sub")
            if user_id is None:
                raise credentials_exception
            role = payload.get("role")
            return AuthContext(
                user_id=UUID(user_id),
                user_role=Role(role) if role else None,
                email=payload.get("email")
            )
        except (jwt.PyJWTError, ValueError):
            raise credentials_exception


def create_access_token(user_id: UUID, role: Role, email: str = None) -> str:
    """Emitir un token compatible (usado por scripts de soporte y tests)."""
    data = {"sub": str(user_id), "role": role.value}
    if email:
        data["email"] = email
    return jwt.encode(data, settings.APP_SECRET_STRING, algorithm=settings.ALGORITHM)


get_auth_context = AuthDependencies.get_auth_context
