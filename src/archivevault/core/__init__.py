"""Core pipeline, orchestrators and models of ArchiveVault."""
