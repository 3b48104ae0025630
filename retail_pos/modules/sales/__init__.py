"""
Módulo de Ventas

Registro de ventas, notas de crédito y cuenta corriente de clientes.

Componentes:
- models.py: SaleOrder, SaleOrderLine, PaymentTender, CurrentAccountEntry/Payment
- pricing.py: cálculo de totales y descuentos
- service.py: SaleOrderService (venta completa en una unidad de trabajo)
- credit_notes.py: CreditNoteService (reversión de ventas)
- current_accounts.py: CurrentAccountService (cobro de deudas)
- router.py: endpoints REST
"""
