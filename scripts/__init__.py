"""Source-checkout wrappers around the mapping_sync command-line entry points."""
