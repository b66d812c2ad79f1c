"""Response-generation strategies and the registry that selects them."""
