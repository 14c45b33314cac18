"""fumo command-line interface."""
