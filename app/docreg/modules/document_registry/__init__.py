"""
Document Registry module.

Scope:
- Per-owner, append-only sequences of document records (content hash + title/description/tags)
- Count and indexed reads for any owner
- Registry-owner emergency stop that suspends every other operation

Hard constraints:
- Document bytes live in an external content-addressed store; only the hash is recorded here
- No update or delete of records
- Uploads and stop toggles are recorded to the append-only audit trail
"""
