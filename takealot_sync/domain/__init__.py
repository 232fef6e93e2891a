"""Domain layer: models and error kinds, free of I/O."""
