"""
Services Layer

Bracket logic that:
- Works on id-keyed record maps (tournament, matches, teams, fields)
- Mutates those records in memory and never touches the session itself
- Leaves persistence to bracket_store, which runs after a call succeeds
"""
