"""
Models Module - Data Models and Type Definitions
=================================================

Provides Pydantic models for runtime validation and API responses.
All models use Pydantic v2 for automatic validation and JSON serialization.

Modules:
    error_models: Error codes, REST error envelope and WebSocket error frames
    schemas: Request/response models for the file, execution and health APIs
        and the session channel messages
"""
