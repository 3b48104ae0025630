"""
Módulo de Cajas

Lotes de caja por cajero, libro de tesorería e informe de cierre.

Componentes:
- models.py: TillSession, TreasuryMovement
- service.py: TillSessionService, TreasuryLedgerService
- reconciliation.py: ReconciliationService (informe de cierre, solo lectura)
- router.py: endpoints REST
"""
