"""Calendar retrieval: providers, fallback and the meeting cache."""
