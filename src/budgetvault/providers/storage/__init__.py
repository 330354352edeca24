"""Remote object storage providers."""
