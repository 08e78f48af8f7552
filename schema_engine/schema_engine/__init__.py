"""Schema-as-code reconciliation engine for Kusto databases and clusters."""
