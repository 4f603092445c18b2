"""Database package: async engine, session factories and ORM tables."""
