"""Storage for the state a relying party shares between login attempts."""
