"""Service layer: storage backends."""
