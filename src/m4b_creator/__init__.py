"""M4B Creator -- bind a directory of MP3 files into one chaptered M4B audiobook.

Core modules:
    config       -- Configuration via pydantic-settings (.env + env vars + CLI kwargs)
    cli          -- Click CLI entry point. Dependency pre-flight, SIGINT -> cancel.
    models       -- Immutable job/chapter/result types and constants
    metadata     -- metadata/metadata.json parsing (pydantic, case-insensitive keys)
    ffprobe      -- Audio file inspection via ffprobe subprocess. probe_audio raises
                    ProbeError on unreadable files.
    transcoder   -- ffmpeg gateway: encoder detection, concat list and FFMETADATA1
                    rendering, transcode with progress/cancellation, extradata check
    discovery    -- Natural-sorted track discovery and chapter derivation
                    (metadata spine offsets or one chapter per file)
    orchestrator -- Per-job pipeline and strictly sequential batches
    sanitize     -- Output filename sanitization
    ui           -- Status and progress protocols with click implementations
"""
