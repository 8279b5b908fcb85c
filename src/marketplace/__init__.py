"""Multi-vendor marketplace order and payment reconciliation engine."""
