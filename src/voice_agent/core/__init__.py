"""Infrastructure -- database engine and monitoring."""
