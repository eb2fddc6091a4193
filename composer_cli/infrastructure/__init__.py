"""Infrastructure layer - Socket transport and the two backend clients."""
