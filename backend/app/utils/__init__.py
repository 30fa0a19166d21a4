"""
Utilities Package for the ReelStage Backend Application.

Modules:
--------
file_validator:
    Media-type parsing, accepted content-type check, declared size check
    and human-readable size formatting.

logger:
    Structured logging configuration: JSONFormatter, StandardFormatter,
    setup_logging and context-carrying logger adapters.

video_category:
    VideoCategory enum and aspect-ratio classification.
"""
