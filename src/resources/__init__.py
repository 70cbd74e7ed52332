"""Resource catalog entries, one module per resource kind."""
