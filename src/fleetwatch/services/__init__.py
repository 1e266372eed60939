"""Engine services: ledger, status engine, reconciler, ticket workflow."""
