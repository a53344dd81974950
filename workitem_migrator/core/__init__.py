"""Core migration engine: state, scheduling, reconciliation and orchestration."""
