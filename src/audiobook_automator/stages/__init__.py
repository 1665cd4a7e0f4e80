"""Per-book stages, sequenced by ConvertOrchestrator.

Order: validate -> metadata -> concat -> convert -> organize -> cleanup

Stages:
    validate -- Inventory the book directory: audio files sorted by name
                (nested files too in recursive mode), skipping hidden and
                unreadable entries. Detects already-converted books.
    metadata -- Resolve title/author/narrator/series/year/genre through the
                provenance cascade (directory name, cover.txt, filename
                patterns, embedded tags, parent hint, online lookup, prompt
                or defaults). Higher-ranked sources are never overwritten.
    concat   -- Build the chapter plan (one chapter per file, contiguous
                offsets) and write the concat list and FFMETADATA1 file.
    convert  -- Mux into one M4B via an ordered list of strategies with
                failure-reason-gated fallback, then validate the artifact.
    organize -- Refuse existing or unwritable destinations up front, then
                move the artifact into the library.
    cleanup  -- Size-guarded deletion of originals and scratch removal.
"""
