"""Helpers used by the stages.

Submodules:
    patterns -- Directory, filename, and parent-folder name patterns. Filename
                patterns are an ordered list tried first-match-wins.
    sidecar  -- cover.txt "Key: value" metadata files
    cover    -- Local cover art discovery and remote cover download
    organize -- Genre category table, library paths, output filenames,
                and moves into the library with empty-dir cleanup
    verify   -- Post-run checks of converted books (container, chapters, cover)
"""
