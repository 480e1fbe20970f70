"""Assassin ring game: ring engine, storage and Discord cogs."""
