"""Credential lifecycle service: registration, login, sessions and password resets."""
