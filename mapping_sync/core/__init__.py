"""Core logic for keeping OneLogin mappings in their declared order.

Module Structure:
    - onelogin/        : OneLogin v2 API client, mapping model, reconciler
    - state_store.py   : Persistence of the last reconciled mapping order

Usage Pattern:
    Modules are not auto-imported; import explicitly when needed:
        from mapping_sync.core.onelogin import OneLoginClient, MappingOrderReconciler
        from mapping_sync.core.state_store import StateStore
"""
