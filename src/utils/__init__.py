"""
Utils Module - Infrastructure Utilities and Support Functions
==============================================================

Modules:
    logger: JSON structured logging with rotation and request context enrichment
    file_utils: Workspace path containment checks and async file operations

Logging (logger.py):
    - Console handler: Human-readable colored format to stderr
    - Events handler: JSON Lines format to logs/events.jsonl
    - Error handler: JSON Lines format to logs/errors.jsonl
"""
