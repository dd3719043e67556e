"""Named virtual environments kept on disk, one self-contained directory each."""
