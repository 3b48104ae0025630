from fastapi import Depends
from sqlalchemy.orm import Session
from typing import Annotated
from retail_pos.database.database import get_db

# Sesión por request (se pasa explícitamente a cada servicio)
db_dependency = Annotated[Session, Depends(get_db)]
