"""Core of ImageLens: memory access, reflection engine, streams, models and the facade."""
