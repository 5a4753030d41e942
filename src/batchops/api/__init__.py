"""HTTP surface of the batch service."""
