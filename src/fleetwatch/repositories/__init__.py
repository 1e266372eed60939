"""Repository protocols, SQL implementations and in-memory fakes."""
