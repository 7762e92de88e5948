"""Post-turn side effects: persistence, broadcast, speech."""
