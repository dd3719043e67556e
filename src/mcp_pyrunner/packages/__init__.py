"""Package installation and listing through an environment's pip."""
