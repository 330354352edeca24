"""Background job execution for the recurring backup."""
