"""Pool state machine and its components."""
