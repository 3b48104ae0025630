"""
Fixtures compartidas para los tests del motor

Cada test usa una base SQLite en memoria nueva, con el catálogo sembrado
(cuentas de tesorería, tipos de comprobante, clientes y artículos de ejemplo).
"""
import os

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from decimal import Decimal
from uuid import uuid4
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from retail_pos.main import app
from retail_pos.database.database import Base, get_db
from retail_pos.modules.auth.dependencies import create_access_token
from retail_pos.modules.auth.schemas import AuthContext, Role
from retail_pos.modules.catalog.seed import seed_catalog
from retail_pos.modules.sales.schemas import SaleOrderCreate, SaleOrderLineCreate, PaymentTenderCreate
from retail_pos.modules.tills.models import TillSession, TillStatus
from retail_pos.modules.tills.schemas import TillOpen
from retail_pos.modules.tills.service import TillSessionService


# ===== BASE DE DATOS =====

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def catalog(db_session):
    """Catálogo sembrado: EFECTIVO, TARJETA, CUENTA CORRIENTE, FACTURA, NOTA DE CREDITO..."""
    seeded = seed_catalog(db_session)
    db_session.commit()
    return seeded


# ===== ACTORES =====

@pytest.fixture
def admin():
    return AuthContext(user_id=uuid4(), user_role=Role.ADMIN, email="admin@pos.test")


@pytest.fixture
def supervisor():
    return AuthContext(user_id=uuid4(), user_role=Role.SUPERVISOR, email="supervisor@pos.test")


@pytest.fixture
def cashier():
    return AuthContext(user_id=uuid4(), user_role=Role.CASHIER, email="cajero@pos.test")


@pytest.fixture
def other_cashier():
    return AuthContext(user_id=uuid4(), user_role=Role.CASHIER, email="cajero2@pos.test")


# ===== CAJA Y VENTAS =====

@pytest.fixture
def open_till(db_session, catalog, cashier):
    """Lote abierto del cajero con saldo inicial 1000"""
    return TillSessionService(db_session).open_till(
        TillOpen(register_id=uuid4(), opening_balance=Decimal("1000")),
        actor=cashier
    )


@pytest.fixture
def sale_payload(catalog, open_till):
    """Construye un SaleOrderCreate a partir de (variante, cantidad) y (cuenta, monto)"""
    def build(lines, tenders, client=None, **extra) -> SaleOrderCreate:
        return SaleOrderCreate(
            client_id=client.id if client else None,
            till_session_id=extra.pop("till_session_id", open_till.id),
            document_type_id=extra.pop("document_type_id", catalog.invoice_type.id),
            lines=[
                SaleOrderLineCreate(variant_id=variant.id, quantity=Decimal(str(quantity)))
                for variant, quantity in lines
            ],
            tenders=[
                PaymentTenderCreate(treasury_account_id=account.id, amount=Decimal(str(amount)))
                for account, amount in tenders
            ],
            **extra
        )
    return build


@pytest.fixture
def close_behind_session(db_session):
    """Cierra un lote en la base sin refrescar el objeto ya cargado (cierre concurrente)"""
    def close(till_session):
        db_session.execute(
            update(TillSession)
            .where(TillSession.id == till_session.id)
            .values(status=TillStatus.CLOSED)
            .execution_options(synchronize_session=False)
        )
    return close


# ===== API =====

@pytest.fixture
def api_client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def build(actor: AuthContext) -> dict:
        token = create_access_token(actor.user_id, actor.user_role, actor.email)
        return {"Authorization": f"Bearer {token}"}
    return build
