"""Service layer: entitlement ledger, AAA provisioning, identity and intake."""
