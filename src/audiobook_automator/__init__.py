"""Audiobook Automator -- turn folders of audio files into chaptered, tagged M4B audiobooks.

Core modules:
    config               -- Configuration via pydantic-settings (.env + env vars + CLI kwargs)
    cli                  -- Click CLI entry point. CLI flags passed as kwargs to
                            PipelineConfig (no env pollution).
    runner               -- Book directory discovery and the sequential batch loop
    convert_orchestrator -- One book's lifecycle, from inventory to a filed M4B
    supervisor           -- ffmpeg under a watchdog: timeout, SIGTERM then SIGKILL of
                            the whole process tree, progress parsing, stderr classification
    models               -- Provenance-ranked BookIdentity, chapters, jobs, results
    errors               -- Exception taxonomy (per-book failures vs. run-level errors)
    ffprobe              -- Audio file inspection via ffprobe subprocess. Numeric functions raise
                            ValueError on empty ffprobe output (corrupt files, missing binary).
    sanitize             -- Filename sanitization for filesystem safety
    concurrency          -- Global instance lock and free-space check

Subpackages:
    api    -- External API clients (Audible catalog search, fuzzy scoring)
    stages -- Per-book stages (validate, metadata, concat, convert, organize, cleanup)
    ops    -- Pure helpers (name patterns, sidecar, cover art, library layout, verification)
"""
