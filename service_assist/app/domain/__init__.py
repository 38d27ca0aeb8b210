"""Domain models, prompt construction and the admission pipeline."""
