"""
Reconciliation Modules.

Orchestration layers over the reconciliation kernel and engines.  Each
module owns its transaction boundary and returns frozen result objects.

Modules:
- Payments: direct partial and full payments
- Credit notes: create / issue / apply bounded reversals
- Bank: matching suggestions and confirmed bank matches

Balance logic lives in recon_kernel.services.invoice_ledger; scoring
lives in recon_engines.
"""
