"""Filesystem side of a run: the backup vault and the config writer."""
