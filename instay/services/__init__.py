"""
Instay Dashboard Services Package.

This package contains the guest reconciliation engine and its durable stores.
Use this module to import commonly-used services.

Example:
    from instay.services import (
        get_guest_service,
        get_name_map_store,
        GuestQuery,
    )

Key service modules:
- phone_utils: PhoneKey normalization and alternate raw forms
- record_extractor: export row -> canonical guest fields
- name_map: persistent phone -> name map
- occurrence_index: append-only archival phone index
- guest_reconciler: per-pass guest record merge
- visibility: checked-out / excluded / failed filtering
- guest_service: entry point tying sources, stores and filters together
- snapshot_poller: background export and message polling
"""

# ============================================================================
# Identity & Extraction
# ============================================================================

from instay.services.phone_utils import (
    normalize_phone,
    alternate_forms,
    lookup_keys,
)

from instay.services.record_extractor import (
    GuestFields,
    extract_fields,
    extract_all,
    parse_csv_rows,
)

# ============================================================================
# Durable Stores
# ============================================================================

from instay.services.name_map import (
    NameMapStore,
    get_name_map_store,
)

from instay.services.occurrence_index import (
    OccurrenceIndexStore,
    get_occurrence_index_store,
    merge_indexes,
)

from instay.services.template_blocklist import (
    TemplateBlocklist,
    get_template_blocklist,
)

# ============================================================================
# Reconciliation
# ============================================================================

from instay.services.guest_reconciler import (
    GuestRecord,
    GuestReconciler,
)

from instay.services.visibility import (
    GuestQuery,
    filter_guests,
)

from instay.services.guest_service import (
    GuestService,
    get_guest_service,
)

# ============================================================================
# Background Polling
# ============================================================================

from instay.services.snapshot_poller import (
    SnapshotPoller,
    get_snapshot_poller,
)

__all__ = [
    # Identity & Extraction
    'normalize_phone',
    'alternate_forms',
    'lookup_keys',
    'GuestFields',
    'extract_fields',
    'extract_all',
    'parse_csv_rows',
    # Durable Stores
    'NameMapStore',
    'get_name_map_store',
    'OccurrenceIndexStore',
    'get_occurrence_index_store',
    'merge_indexes',
    'TemplateBlocklist',
    'get_template_blocklist',
    # Reconciliation
    'GuestRecord',
    'GuestReconciler',
    'GuestQuery',
    'filter_guests',
    'GuestService',
    'get_guest_service',
    # Background Polling
    'SnapshotPoller',
    'get_snapshot_poller',
]
