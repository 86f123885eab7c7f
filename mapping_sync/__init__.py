"""OneLogin mapping order synchronizer.

To use the OneLogin client and reconciler:
    from mapping_sync.core.onelogin import OneLoginClient, MappingOrderReconciler

To load settings and declared state:
    from mapping_sync.config import load_settings, load_desired_state
"""
