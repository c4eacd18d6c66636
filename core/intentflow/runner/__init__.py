"""Handler registration and command-line runners."""
