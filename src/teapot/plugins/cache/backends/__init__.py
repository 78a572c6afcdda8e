"""Storage backends shared by cache plugins."""
