"""Background job execution: the poll trigger and the run wrapper."""
